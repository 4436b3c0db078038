"""In-memory reference backend for the travel order portal.

``TravelOrderService`` is the single authority for status transitions, chain
materialization, attachment storage and role-scoped reads. Every read returns a
copy, so callers can only change an order through the service's operations.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from .attachments import (
    SIGNATURE_POLICY,
    AttachmentManager,
    BatchResult,
    UploadFile,
)
from .errors import (
    MemberNotFound,
    NotAuthorized,
    NotEditable,
    OrderNotFound,
    ValidationError,
)
from .export import OrderExportService
from .listing import (
    ListQuery,
    ListView,
    Page,
    director_history_view,
    roster_view,
    travel_order_view,
)
from .logging import get_logger
from .models import (
    Actor,
    Attachment,
    AttachmentType,
    Decision,
    DirectorSignature,
    OrderDetail,
    RoleName,
    StepStatus,
    TravelOrder,
)
from .security import AuditEventType, AuditLog, SecurityModel
from .validation import FIELD_ORDER
from .workflow import RoutingDecision, WorkflowEngine

logger = get_logger(__name__)

ExportFormat = Literal["pdf", "excel"]
FileBatch = Iterable[tuple[UploadFile, AttachmentType | None]]

# Roster path segment for each account role the administrator manages.
MANAGED_ROLES: dict[RoleName, str] = {
    RoleName.DIRECTOR: "directors",
    RoleName.PERSONNEL: "personnel",
}
MEMBER_REQUIRED_FIELDS = ("username", "first_name", "last_name", "department", "position")


class _FormFields(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class DraftFields(_FormFields):
    """Editable travel order fields as sent by the draft form."""

    travel_purpose: str | None = None
    destination: str | None = None
    official_station: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    objectives: str | None = None
    per_diems_expenses: Decimal | None = None
    per_diems_note: str | None = None
    assistant_or_laborers_allowed: str | None = None
    appropriation: str | None = None
    remarks: str | None = None


class MemberFields(_FormFields):
    """Account fields an administrator sets on a director or personnel."""

    username: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    position: str | None = None
    department: str | None = None
    contact_information: str | None = None
    is_active: bool | None = None
    reason_for_deactivation: str | None = None


def _pydantic_to_portal(
    exc: PydanticValidationError, default_field: str = "__root__"
) -> ValidationError:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or default_field
        errors.setdefault(field, []).append(error["msg"])
    first_field = next(iter(errors))
    return ValidationError(first_field, errors[first_field][0], errors)


class TravelOrderService:
    """Own travel orders, actors and files, and enforce who may change what."""

    def __init__(
        self,
        engine: WorkflowEngine | None = None,
        attachments: AttachmentManager | None = None,
        security: SecurityModel | None = None,
        exporter: OrderExportService | None = None,
    ) -> None:
        self.engine = engine or WorkflowEngine()
        self.attachments = attachments or AttachmentManager()
        self.security = security or SecurityModel()
        self.exporter = exporter or OrderExportService()
        self._orders: dict[int, TravelOrder] = {}
        self._actors: dict[int, Actor] = {}
        self._signatures: dict[int, DirectorSignature] = {}
        self._order_ids = itertools.count(1)

    @property
    def audit_log(self) -> AuditLog:
        return self.security.audit_log

    # Actors

    def register_actor(self, actor: Actor) -> Actor:
        self._actors[actor.id] = actor
        return actor

    def actor(self, actor_id: int) -> Actor:
        actor = self._actors.get(actor_id)
        if actor is None or not actor.is_active:
            raise NotAuthorized("Unknown or inactive user.")
        return actor

    def _authorize(self, actor_id: int, endpoint: str) -> Actor:
        """Resolve the actor and check the endpoint against the permission matrix."""

        actor = self.actor(actor_id)
        if not self.security.authorize(actor, endpoint):
            raise NotAuthorized("Your role is not allowed to perform this action.")
        return actor

    def _authorize_own_role(self, actor_id: int, template: str) -> Actor:
        """Authorize a route every role reaches under its own prefix."""

        actor = self.actor(actor_id)
        return self._authorize(actor_id, template.format(prefix=actor.role.route_prefix))

    def routing_directors(self, actor_id: int) -> list[Actor]:
        """Active directors, offered as routing choices at submission."""

        self._authorize(actor_id, "GET /personnel/directors")
        people = [
            a for a in self._actors.values() if a.role == RoleName.DIRECTOR and a.is_active
        ]
        return [a.model_copy() for a in sorted(people, key=lambda a: a.display_name.lower())]

    # Roster management

    def _roster_endpoint(self, method: str, role: RoleName, *, member: bool = False) -> str:
        segment = MANAGED_ROLES.get(role)
        if segment is None:
            raise ValidationError("role", "Only director and personnel accounts are managed.")
        return f"{method} /ict-admin/{segment}" + ("/:id" if member else "")

    def _member(self, member_id: int, role: RoleName) -> Actor:
        member = self._actors.get(member_id)
        if member is None or member.role != role:
            raise MemberNotFound(f"No {role.value} account with id {member_id}.")
        return member

    @staticmethod
    def _parse_member(fields: Mapping[str, object]) -> dict[str, Any]:
        try:
            return MemberFields.model_validate(dict(fields)).model_dump(exclude_unset=True)
        except PydanticValidationError as exc:
            raise _pydantic_to_portal(exc) from exc

    def _check_member(
        self,
        values: Mapping[str, Any],
        member_id: int | None,
        required: Iterable[str] = MEMBER_REQUIRED_FIELDS,
    ) -> None:
        for name in required:
            if not values.get(name):
                raise ValidationError(name, f"The {name.replace('_', ' ')} field is required.")
        username = values.get("username")
        for other in self._actors.values():
            if username and other.id != member_id and other.username == username:
                raise ValidationError("username", "The username has already been taken.")
        if not values.get("is_active", True) and not values.get("reason_for_deactivation"):
            raise ValidationError(
                "reason_for_deactivation", "Give a reason for deactivating this account."
            )

    def _record_roster(self, actor_id: int, member: Actor, outcome: str) -> None:
        self.audit_log.record(
            AuditEventType.ROSTER,
            actor=actor_id,
            subject=f"{member.role.value}:{member.id}",
            outcome=outcome,
        )
        logger.info("roster_changed", member_id=member.id, role=member.role.value, outcome=outcome)

    def roster(
        self, actor_id: int, role: RoleName, query: ListQuery | None = None
    ) -> Page[Actor]:
        """Directors or personnel, active and inactive, for the administrator."""

        self._authorize(actor_id, self._roster_endpoint("GET", role))
        members = [a.model_copy() for a in self._actors.values() if a.role == role]
        return roster_view.paginate(members, query or ListQuery())

    def create_member(
        self, actor_id: int, role: RoleName, fields: Mapping[str, object]
    ) -> Actor:
        self._authorize(actor_id, self._roster_endpoint("POST", role))
        values = {"is_active": True, **self._parse_member(fields)}
        if values["is_active"] is None:
            values["is_active"] = True
        self._check_member(values, member_id=None)
        member = Actor(id=max(self._actors, default=0) + 1, role=role, **values)
        self._actors[member.id] = member
        self._record_roster(actor_id, member, "created")
        return member.model_copy()

    def update_member(
        self,
        actor_id: int,
        role: RoleName,
        member_id: int,
        fields: Mapping[str, object],
    ) -> Actor:
        """Change a member's details; only sent fields are touched."""

        self._authorize(actor_id, self._roster_endpoint("PUT", role, member=True))
        current = self._member(member_id, role)
        changes = self._parse_member(fields)
        if changes.get("is_active", False) is None:
            del changes["is_active"]
        merged = {**current.model_dump(), **changes}
        if merged["is_active"]:
            merged["reason_for_deactivation"] = None
        # Required fields may not be cleared, but older accounts may lack them.
        sent_required = [name for name in MEMBER_REQUIRED_FIELDS if name in changes]
        self._check_member(merged, member_id=member_id, required=sent_required)
        member = Actor.model_validate(merged)
        self._actors[member_id] = member
        if current.is_active and not member.is_active:
            outcome = "deactivated"
        elif member.is_active and not current.is_active:
            outcome = "reactivated"
        else:
            outcome = "updated"
        self._record_roster(actor_id, member, outcome)
        return member.model_copy()

    def deactivate_member(
        self, actor_id: int, role: RoleName, member_id: int, reason: str
    ) -> Actor:
        """Block sign-in and routing for a member; their orders are kept."""

        return self.update_member(
            actor_id,
            role,
            member_id,
            {"is_active": False, "reason_for_deactivation": reason},
        )

    # Orders

    def _order(self, order_id: int) -> TravelOrder:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(f"Travel order {order_id} not found.")
        return order

    def _owned_draft(self, order_id: int, actor_id: int, endpoint: str) -> TravelOrder:
        self._authorize(actor_id, endpoint)
        order = self._order(order_id)
        if order.requester_id != actor_id:
            raise NotAuthorized("You can only change your own travel orders.")
        if not order.is_editable:
            raise NotEditable("Only draft travel orders can be changed.")
        return order

    def _parse_fields(self, fields: Mapping[str, object]) -> DraftFields:
        self.engine.validator.ensure_valid(fields, partial=True)
        try:
            return DraftFields.model_validate(dict(fields))
        except PydanticValidationError as exc:
            raise _pydantic_to_portal(exc) from exc

    def create_draft(
        self,
        actor_id: int,
        fields: Mapping[str, object],
        files: FileBatch = (),
    ) -> tuple[TravelOrder, BatchResult]:
        """Create a draft owned by the calling personnel, with optional files."""

        actor = self._authorize(actor_id, "POST /personnel/travel-orders")
        values = self._parse_fields(fields)
        now = self.engine.clock()
        order = TravelOrder(
            id=next(self._order_ids),
            requester_id=actor.id,
            requester=actor.ref(),
            created_at=now,
            updated_at=now,
            **values.model_dump(),
        )
        result = self.attachments.add_attachments(order, files)
        self._orders[order.id] = order
        self._record_attachments(actor_id, order, result)
        logger.info(
            "draft_created",
            order_id=order.id,
            requester_id=actor_id,
            attachments=len(order.attachments),
        )
        return order.model_copy(deep=True), result

    def update_draft(
        self,
        order_id: int,
        actor_id: int,
        fields: Mapping[str, object],
        files: FileBatch = (),
        delete_attachment_ids: Iterable[int] = (),
    ) -> tuple[TravelOrder, BatchResult]:
        """Replace a draft's sent fields and apply its staged attachment edits."""

        order = self._owned_draft(order_id, actor_id, "PUT /personnel/travel-orders/:id")
        values = self._parse_fields(fields)
        removals = list(delete_attachment_ids)
        unknown = [i for i in removals if order.attachment(i) is None]
        if unknown:
            raise ValidationError(
                "delete_attachment_ids",
                f"Attachment {unknown[0]} does not belong to this travel order.",
            )

        changed = values.model_dump(exclude_unset=True)
        merged = {**order.model_dump(include=set(FIELD_ORDER)), **changed}
        self.engine.validator.ensure_valid(merged, partial=True)
        for name, value in changed.items():
            setattr(order, name, value)
        result = self.attachments.apply(order, files, removals)
        order.updated_at = self.engine.clock()
        if removals:
            self.audit_log.record(
                AuditEventType.ATTACHMENT,
                actor=actor_id,
                subject=f"travel_order:{order.id}",
                outcome="removed",
                metadata={"attachment_ids": removals},
            )
        self._record_attachments(actor_id, order, result)
        logger.info("draft_updated", order_id=order.id, requester_id=actor_id)
        return order.model_copy(deep=True), result

    def delete_draft(self, order_id: int, actor_id: int) -> None:
        order = self._owned_draft(order_id, actor_id, "DELETE /personnel/travel-orders/:id")
        self.attachments.purge(order)
        del self._orders[order_id]
        logger.info("draft_deleted", order_id=order_id, requester_id=actor_id)

    def _record_attachments(
        self, actor_id: int, order: TravelOrder, result: BatchResult
    ) -> None:
        for outcome in result.outcomes:
            self.audit_log.record(
                AuditEventType.ATTACHMENT,
                actor=actor_id,
                subject=f"travel_order:{order.id}",
                outcome="added" if outcome.accepted else "refused",
                metadata={"file_name": outcome.file_name, "error_code": outcome.error_code},
            )

    def _routing(self, routing: RoutingDecision | Mapping[str, object]) -> RoutingDecision:
        if isinstance(routing, RoutingDecision):
            decision = routing
        else:
            try:
                decision = RoutingDecision.model_validate(dict(routing))
            except PydanticValidationError as exc:
                raise _pydantic_to_portal(exc, "recommending_director_id") from exc

        candidates = {
            "recommending_director_id": decision.recommending_director_id,
            "approving_director_id": decision.approving_director_id,
        }
        for field, director_id in candidates.items():
            if director_id is None:
                continue
            director = self._actors.get(director_id)
            if director is None or director.role != RoleName.DIRECTOR or not director.is_active:
                raise ValidationError(field, "Select an active director.")
        return decision

    def submit(
        self,
        order_id: int,
        actor_id: int,
        routing: RoutingDecision | Mapping[str, object],
    ) -> TravelOrder:
        """Submit a draft for approval along the chosen director chain."""

        self._authorize(actor_id, "POST /personnel/travel-orders/:id/submit")
        order = self._order(order_id)
        if order.requester_id != actor_id:
            raise NotAuthorized("Only the requester can submit this travel order.")
        decision = self._routing(routing)
        self.engine.submit(order, decision, actor_id=actor_id)
        for step in order.approvals:
            step.director = self._actors[step.director_id].ref()
        self.audit_log.record(
            AuditEventType.WORKFLOW,
            actor=actor_id,
            subject=f"travel_order:{order.id}",
            outcome=order.status.value,
            metadata={"action": "submit", "directors": decision.director_ids()},
        )
        return order.model_copy(deep=True)

    def act(
        self,
        order_id: int,
        director_id: int,
        decision: Decision | str,
        remarks: str | None = None,
    ) -> TravelOrder:
        """Record a director's decision on the order's current step."""

        self._authorize(director_id, "POST /directors/travel-orders/:id/action")
        try:
            chosen = Decision(decision)
        except ValueError as exc:
            raise ValidationError(
                "action", "Action must be one of: recommend, approve, reject."
            ) from exc
        order = self._order(order_id)
        self.engine.act(order, director_id, chosen, remarks)
        self.audit_log.record(
            AuditEventType.WORKFLOW,
            actor=director_id,
            subject=f"travel_order:{order.id}",
            outcome=order.status.value,
            metadata={"action": chosen.value},
        )
        return order.model_copy(deep=True)

    # Reads

    def _visible_order(self, actor: Actor, order_id: int) -> TravelOrder:
        order = self._order(order_id)
        if not self.security.check_order_access(actor, order):
            raise NotAuthorized("You do not have access to this travel order.")
        return order.model_copy(deep=True)

    def get_order(self, order_id: int, actor_id: int) -> TravelOrder:
        """Return an order the actor's role allows them to see."""

        actor = self._authorize_own_role(actor_id, "GET /{prefix}/travel-orders/:id")
        return self._visible_order(actor, order_id)

    def get_order_detail(self, order_id: int, director_id: int) -> OrderDetail:
        """Return an order in the director's scope with its current step."""

        actor = self._authorize(director_id, "GET /directors/travel-orders/:id")
        order = self._visible_order(actor, order_id)
        return OrderDetail(travel_order=order, current_approval=order.current_step)

    @staticmethod
    def _listed(
        orders: Iterable[TravelOrder],
        query: ListQuery | None,
        view: ListView[TravelOrder] = travel_order_view,
    ) -> Page[TravelOrder]:
        """Newest first, then the shared search, date-range and paging rules."""

        ordered = sorted(orders, key=lambda o: o.id or 0, reverse=True)
        page = view.paginate(ordered, query or ListQuery())
        return replace(page, items=[order.model_copy(deep=True) for order in page.items])

    def orders_for_personnel(
        self, actor_id: int, query: ListQuery | None = None
    ) -> Page[TravelOrder]:
        self._authorize(actor_id, "GET /personnel/travel-orders")
        return self._listed(
            (o for o in self._orders.values() if o.requester_id == actor_id), query
        )

    def pending_for_director(
        self, director_id: int, query: ListQuery | None = None
    ) -> Page[TravelOrder]:
        """Orders whose current step is bound to the director."""

        self._authorize(director_id, "GET /directors/travel-orders/pending")
        pending = []
        for order in self._orders.values():
            step = order.current_step
            if step is not None and step.director_id == director_id and not step.has_acted:
                pending.append(order)
        return self._listed(pending, query)

    def history_for_director(
        self, director_id: int, query: ListQuery | None = None
    ) -> Page[TravelOrder]:
        """Orders the director already acted on; ``query.status`` is their decision."""

        self._authorize(director_id, "GET /directors/travel-orders/history")
        status = query.status if query else None
        if status:
            try:
                wanted = StepStatus(status)
            except ValueError as exc:
                raise ValidationError("status", f"Unknown history status '{status}'.") from exc
            if wanted == StepStatus.PENDING:
                raise ValidationError("status", "History only lists decided orders.")

        history = [
            order
            for order in self._orders.values()
            if any(step.has_acted for step in order.steps_for(director_id))
        ]
        return self._listed(history, query, director_history_view(director_id))

    def all_orders(self, actor_id: int, query: ListQuery | None = None) -> Page[TravelOrder]:
        self._authorize(actor_id, "GET /ict-admin/travel-orders")
        return self._listed(self._orders.values(), query)

    # Files

    def download_attachment(self, attachment_id: int, actor_id: int) -> tuple[Attachment, bytes]:
        """Return an attachment and its content, in any order status."""

        actor = self._authorize_own_role(
            actor_id, "GET /{prefix}/travel-order-attachments/:id/download"
        )
        for order in self._orders.values():
            attachment = order.attachment(attachment_id)
            if attachment is None:
                continue
            if not self.security.check_order_access(actor, order):
                raise NotAuthorized("You do not have access to this attachment.")
            self.audit_log.record(
                AuditEventType.ATTACHMENT,
                actor=actor_id,
                subject=f"attachment:{attachment_id}",
                outcome="downloaded",
            )
            return attachment.model_copy(), self.attachments.read(attachment)
        raise OrderNotFound(f"Attachment {attachment_id} not found.")

    def export_order(
        self,
        order_id: int,
        actor_id: int,
        fmt: ExportFormat = "pdf",
        *,
        include_ctt: bool = False,
    ) -> tuple[str, bytes]:
        """Render an order the actor may see as a PDF or Excel file."""

        if fmt not in ("pdf", "excel"):
            raise ValidationError("format", f"Unsupported export format '{fmt}'.")
        actor = self._authorize_own_role(
            actor_id, "GET /{prefix}/travel-orders/:id/export/" + fmt
        )
        order = self._visible_order(actor, order_id)
        if fmt == "excel":
            return self.exporter.to_excel(order, now=self.engine.clock())
        signatures = {
            step.director_id: image
            for step in order.approvals
            if (image := self.signature_image(step.director_id)) is not None
        }
        return self.exporter.to_pdf(order, include_ctt=include_ctt, signatures=signatures)

    def set_signature(self, director_id: int, upload: UploadFile) -> DirectorSignature:
        """Store or replace a director's signature image."""

        self._authorize(director_id, "POST /directors/profile/signature")
        SIGNATURE_POLICY.check(upload)
        store = self.attachments.store
        previous = self._signatures.get(director_id)
        signature = DirectorSignature(
            director_id=director_id,
            file_name=upload.file_name,
            file_reference=store.put(f"signatures/{director_id}", upload),
            content_type=upload.guessed_content_type(),
            size_bytes=upload.size,
            updated_at=self.engine.clock(),
        )
        if previous is not None:
            store.delete(previous.file_reference)
        self._signatures[director_id] = signature
        self.audit_log.record(
            AuditEventType.SIGNATURE,
            actor=director_id,
            outcome="replaced" if previous else "uploaded",
        )
        logger.info("signature_saved", director_id=director_id, size_bytes=upload.size)
        return signature.model_copy()

    def remove_signature(self, director_id: int) -> None:
        self._authorize(director_id, "POST /directors/profile/signature")
        previous = self._signatures.pop(director_id, None)
        if previous is not None:
            self.attachments.store.delete(previous.file_reference)
            self.audit_log.record(AuditEventType.SIGNATURE, actor=director_id, outcome="removed")
            logger.info("signature_removed", director_id=director_id)

    def signature(self, director_id: int) -> DirectorSignature | None:
        self._authorize(director_id, "GET /directors/profile/signature")
        current = self._signatures.get(director_id)
        return current.model_copy() if current else None

    def signature_image(self, director_id: int) -> bytes | None:
        current = self._signatures.get(director_id)
        if current is None:
            return None
        return self.attachments.store.get(current.file_reference)

