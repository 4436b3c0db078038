"""Draft edit surface: form values, staged attachments and the dirty flag."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal, InvalidOperation

from .attachments import (
    AttachmentChangeSet,
    AttachmentPolicy,
    BatchResult,
    FileOutcome,
    PendingUpload,
    UploadFile,
)
from .client import PortalClient
from .errors import AttachmentError, NotEditable
from .guard import UnsavedChangesGuard
from .logging import get_logger
from .models import Attachment, AttachmentType, RoleName, TravelOrder
from .notifications import NoticeBoard
from .session import ActionLocks
from .validation import FIELD_ORDER, OrderValidator
from .workflow import RoutingDecision

logger = get_logger(__name__)

NEW_DRAFT_PATH = "/personnel/travel-orders/create"


def _normalized(name: str, value: object) -> object:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if name == "per_diems_expenses":
        try:
            return Decimal(str(value).strip()).normalize()
        except InvalidOperation:
            return str(value).strip()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    return value


def form_values(order: TravelOrder) -> dict[str, object]:
    """Field values as loaded into the edit form."""

    return order.model_dump(include=set(FIELD_ORDER))


class DraftEditor:
    """Edit one draft travel order, new or existing.

    Every change re-registers the editor with the unsaved-changes guard, and
    a save rebases the form on the order the server returned.
    """

    def __init__(
        self,
        client: PortalClient,
        guard: UnsavedChangesGuard,
        locks: ActionLocks,
        order: TravelOrder,
        *,
        path: str,
        validator: OrderValidator | None = None,
        policy: AttachmentPolicy | None = None,
        notices: NoticeBoard | None = None,
    ) -> None:
        if not order.is_editable:
            raise NotEditable("Only draft travel orders can be edited.")
        self.client = client
        self.guard = guard
        self.locks = locks
        self.path = path
        self.validator = validator or OrderValidator.default()
        self.policy = policy or client.config.order_attachment_policy()
        self.notices = notices
        self.last_result = BatchResult()
        self._rebase(order)

    @classmethod
    def new(
        cls,
        client: PortalClient,
        guard: UnsavedChangesGuard,
        locks: ActionLocks,
        **kwargs: object,
    ) -> DraftEditor:
        user = client.session.user
        blank = TravelOrder(requester_id=user.id if user else 0)
        return cls(client, guard, locks, blank, path=NEW_DRAFT_PATH, **kwargs)

    @classmethod
    def open(
        cls,
        client: PortalClient,
        guard: UnsavedChangesGuard,
        locks: ActionLocks,
        order_id: int,
        **kwargs: object,
    ) -> DraftEditor:
        """Fetch an existing draft from the server and start editing it."""

        order = client.get_order(order_id, RoleName.PERSONNEL)
        return cls(
            client, guard, locks, order, path=f"/personnel/travel-orders/{order_id}/edit", **kwargs
        )

    def _rebase(self, order: TravelOrder) -> None:
        self.order = order
        self.initial = form_values(order)
        self.values = dict(self.initial)
        self.changes = AttachmentChangeSet(order=order, policy=self.policy)
        self._sync_guard()

    def _sync_guard(self) -> None:
        self.guard.set_blocking(self.path, self.is_dirty)

    @property
    def is_new(self) -> bool:
        return self.order.id is None

    @property
    def is_dirty(self) -> bool:
        if self.changes.has_changes:
            return True
        return any(
            _normalized(name, self.values.get(name)) != _normalized(name, self.initial.get(name))
            for name in FIELD_ORDER
        )

    # Fields

    def set_field(self, name: str, value: object) -> None:
        if name not in FIELD_ORDER:
            raise KeyError(f"Unknown travel order field '{name}'")
        self.values[name] = value
        self._sync_guard()

    def update(self, **values: object) -> None:
        for name, value in values.items():
            if name not in FIELD_ORDER:
                raise KeyError(f"Unknown travel order field '{name}'")
            self.values[name] = value
        self._sync_guard()

    def errors(self) -> dict[str, list[str]]:
        """Inline messages for the whole form, as checked at submission."""

        return self.validator.errors_by_field(self.values)

    # Attachments

    def add_files(
        self, files: Iterable[tuple[UploadFile, AttachmentType | None]]
    ) -> BatchResult:
        """Stage new files; refused files are reported and skipped."""

        result = self.changes.add_many(files)
        self._sync_guard()
        return result

    def set_file_type(self, index: int, attachment_type: AttachmentType) -> None:
        self.changes.set_type(index, attachment_type)

    def discard_file(self, index: int) -> PendingUpload:
        pending = self.changes.discard(index)
        self._sync_guard()
        return pending

    def remove_attachment(self, attachment_id: int) -> None:
        self.changes.remove(attachment_id)
        self._sync_guard()

    def undo_remove(self, attachment_id: int) -> None:
        self.changes.undo_remove(attachment_id)
        self._sync_guard()

    @property
    def pending_uploads(self) -> list[PendingUpload]:
        return list(self.changes.uploads)

    def visible_attachments(self) -> list[Attachment]:
        return self.changes.visible_attachments()

    # Server round trips

    def _lock_key(self, action: str) -> tuple[str, int | str]:
        return (action, self.order.id if self.order.id is not None else "new")

    def _reconcile_uploads(
        self, uploads: list[tuple[UploadFile, AttachmentType]], before: set[int], saved: TravelOrder
    ) -> BatchResult:
        """Match staged files against the attachments the server kept.

        Files the server dropped without an error response are reported as
        rejected rather than disappearing with the rebase.
        """

        added = [a for a in saved.attachments if a.id not in before]
        outcomes: list[FileOutcome] = []
        for upload, _type in uploads:
            match = next((a for a in added if a.file_name == upload.file_name), None)
            if match is not None:
                added.remove(match)
                outcomes.append(
                    FileOutcome(file_name=upload.file_name, accepted=True, attachment=match)
                )
                continue
            error = AttachmentError(
                upload.file_name, f'File "{upload.file_name}" was not saved by the server.'
            )
            outcomes.append(FileOutcome.failed(upload.file_name, error))
            logger.warning("attachment_not_saved", order_id=saved.id, file_name=upload.file_name)
            if self.notices is not None:
                self.notices.error(error.message, error.code)
        return BatchResult(outcomes=outcomes)

    def save(self) -> TravelOrder:
        """Send the form and staged attachment edits in one request.

        Per-file outcomes of the staged uploads are kept on ``last_result``.
        """

        with self.locks.hold(self._lock_key("save")):
            self.validator.ensure_valid(self.values, partial=True)
            uploads = [(p.upload, p.type) for p in self.changes.uploads]
            before = {a.id for a in self.order.attachments}
            if self.is_new:
                saved = self.client.create_draft(self.values, uploads)
            else:
                saved = self.client.update_draft(
                    self.order.id,
                    self.values,
                    uploads,
                    delete_attachment_ids=list(self.changes.removals),
                )
        self.last_result = self._reconcile_uploads(uploads, before, saved)
        logger.info(
            "draft_saved",
            order_id=saved.id,
            uploads=len(uploads),
            rejected=len(self.last_result.rejected),
        )
        self._rebase(saved)
        return saved

    def submit(self, routing: RoutingDecision) -> TravelOrder:
        """Validate, save pending edits, then submit for approval.

        The returned order carries the server's status and approval chain.
        """

        self.validator.ensure_valid(self.values)
        if self.is_dirty or self.is_new:
            self.save()
        with self.locks.hold(self._lock_key("submit")):
            submitted = self.client.submit(self.order.id, routing)
        self.order = submitted
        self.guard.set_blocking(self.path, False)
        logger.info("draft_submitted", order_id=submitted.id, status=submitted.status.value)
        return submitted

    def discard(self) -> None:
        """Drop every unsaved edit."""

        self._rebase(self.order)

    def delete(self) -> None:
        if self.is_new:
            self.discard()
            return
        with self.locks.hold(self._lock_key("delete")):
            self.client.delete_draft(self.order.id)
        self.guard.set_blocking(self.path, False)
