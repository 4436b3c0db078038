"""Role permissions, record-level access rules and the audit log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .logging import get_logger
from .models import Actor, RoleName, TravelOrder

logger = get_logger(__name__)


class Permission(StrEnum):
    """Supported permissions for API endpoints."""

    VIEW = "view"
    CREATE = "create"
    APPROVE = "approve"
    EXPORT = "export"
    CONFIGURE = "configure"


@dataclass(frozen=True)
class Role:
    """Role definition including its permissions."""

    name: RoleName
    permissions: set[Permission]

    def can(self, permission: Permission) -> bool:
        """Return whether the role grants a permission."""

        return permission in self.permissions


DEFAULT_ROLES: dict[RoleName, Role] = {
    RoleName.PERSONNEL: Role(
        name=RoleName.PERSONNEL,
        permissions={Permission.VIEW, Permission.CREATE, Permission.EXPORT},
    ),
    RoleName.DIRECTOR: Role(
        name=RoleName.DIRECTOR,
        permissions={Permission.VIEW, Permission.APPROVE, Permission.EXPORT},
    ),
    RoleName.ICT_ADMIN: Role(
        name=RoleName.ICT_ADMIN,
        permissions={Permission.VIEW, Permission.EXPORT, Permission.CONFIGURE},
    ),
}


API_ENDPOINT_PERMISSIONS: dict[str, Permission] = {
    "GET /personnel/travel-orders": Permission.VIEW,
    "POST /personnel/travel-orders": Permission.CREATE,
    "GET /personnel/travel-orders/:id": Permission.VIEW,
    "PUT /personnel/travel-orders/:id": Permission.CREATE,
    "DELETE /personnel/travel-orders/:id": Permission.CREATE,
    "POST /personnel/travel-orders/:id/submit": Permission.CREATE,
    "GET /personnel/directors": Permission.CREATE,
    "GET /personnel/travel-order-attachments/:id/download": Permission.VIEW,
    "GET /personnel/travel-orders/:id/export/pdf": Permission.EXPORT,
    "GET /personnel/travel-orders/:id/export/excel": Permission.EXPORT,
    "GET /directors/travel-orders/pending": Permission.APPROVE,
    "GET /directors/travel-orders/history": Permission.APPROVE,
    "GET /directors/travel-orders/:id": Permission.VIEW,
    "POST /directors/travel-orders/:id/action": Permission.APPROVE,
    "GET /directors/travel-order-attachments/:id/download": Permission.VIEW,
    "GET /directors/travel-orders/:id/export/pdf": Permission.EXPORT,
    "GET /directors/travel-orders/:id/export/excel": Permission.EXPORT,
    "GET /directors/profile/signature": Permission.APPROVE,
    "POST /directors/profile/signature": Permission.APPROVE,
    "GET /ict-admin/travel-orders": Permission.VIEW,
    "GET /ict-admin/travel-orders/:id": Permission.VIEW,
    "GET /ict-admin/travel-order-attachments/:id/download": Permission.VIEW,
    "GET /ict-admin/travel-orders/:id/export/pdf": Permission.EXPORT,
    "GET /ict-admin/travel-orders/:id/export/excel": Permission.EXPORT,
    "GET /ict-admin/directors": Permission.CONFIGURE,
    "POST /ict-admin/directors": Permission.CONFIGURE,
    "PUT /ict-admin/directors/:id": Permission.CONFIGURE,
    "GET /ict-admin/personnel": Permission.CONFIGURE,
    "POST /ict-admin/personnel": Permission.CONFIGURE,
    "PUT /ict-admin/personnel/:id": Permission.CONFIGURE,
}


class AuditEventType(StrEnum):
    """Types of audit events recorded by the portal."""

    AUTHORIZATION = "authorization"
    WORKFLOW = "workflow"
    ATTACHMENT = "attachment"
    SIGNATURE = "signature"
    ROSTER = "roster"


@dataclass
class AuditLogEvent:
    """Single audit log entry."""

    event_type: AuditEventType
    actor: int
    subject: str | None
    outcome: str
    metadata: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class AuditLog:
    """In-memory audit log of access decisions and record changes."""

    events: list[AuditLogEvent] = field(default_factory=list)

    def record(
        self,
        event_type: AuditEventType,
        actor: int,
        outcome: str,
        subject: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLogEvent:
        """Record a new audit event."""

        event = AuditLogEvent(
            event_type=event_type,
            actor=actor,
            subject=subject,
            outcome=outcome,
            metadata=metadata or {},
        )
        self.events.append(event)
        return event

    def filter_by_type(self, event_type: AuditEventType) -> list[AuditLogEvent]:
        """Return audit events filtered by type."""

        return [event for event in self.events if event.event_type == event_type]


def is_in_director_scope(director_id: int, order: TravelOrder) -> bool:
    """True when the order is in the director's queue or history.

    A step is in scope once it is current or already acted on; a step-2
    director does not see an order while step 1 is still pending, nor after a
    step-1 rejection ended the chain.
    """

    current = order.current_step_order
    for step in order.steps_for(director_id):
        if step.has_acted or step.step_order == current:
            return True
    return False


def can_view_order(actor: Actor, order: TravelOrder) -> bool:
    """Role-scoped read access to an order and its attachments."""

    if actor.role == RoleName.ICT_ADMIN:
        return True
    if actor.role == RoleName.PERSONNEL:
        return order.requester_id == actor.id
    if actor.role == RoleName.DIRECTOR:
        return is_in_director_scope(actor.id, order)
    return False


class SecurityModel:
    """Map roles to permissions and check record-level access."""

    def __init__(
        self,
        roles: dict[RoleName, Role] | None = None,
        endpoint_permissions: dict[str, Permission] | None = None,
        audit_log: AuditLog | None = None,
    ) -> None:
        self.roles = roles or DEFAULT_ROLES
        self.endpoint_permissions = endpoint_permissions or API_ENDPOINT_PERMISSIONS
        self.audit_log = audit_log or AuditLog()

    def required_permission(self, endpoint: str) -> Permission:
        """Return the permission required for an API endpoint."""

        if endpoint not in self.endpoint_permissions:
            raise KeyError(f"No permission mapped for endpoint '{endpoint}'")
        return self.endpoint_permissions[endpoint]

    def authorize(self, actor: Actor, endpoint: str) -> bool:
        """Authorize an actor's role for an endpoint and log the decision."""

        required = self.required_permission(endpoint)
        prefix = "/" + actor.role.route_prefix + "/"
        path = endpoint.split(" ", 1)[-1]
        allowed = path.startswith(prefix) and self.roles[actor.role].can(required)
        self.audit_log.record(
            event_type=AuditEventType.AUTHORIZATION,
            actor=actor.id,
            outcome="allowed" if allowed else "denied",
            metadata={
                "role": actor.role.value,
                "endpoint": endpoint,
                "required_permission": required.value,
            },
        )
        if not allowed:
            logger.warning(
                "authorization_denied", actor_id=actor.id, endpoint=endpoint
            )
        return allowed

    def check_order_access(self, actor: Actor, order: TravelOrder) -> bool:
        allowed = can_view_order(actor, order)
        if not allowed:
            self.audit_log.record(
                event_type=AuditEventType.AUTHORIZATION,
                actor=actor.id,
                subject=f"travel_order:{order.id}",
                outcome="denied",
                metadata={"role": actor.role.value},
            )
            logger.warning(
                "order_access_denied", actor_id=actor.id, order_id=order.id
            )
        return allowed
