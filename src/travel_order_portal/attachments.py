"""Attachment policies, staged attachment edits and file storage."""

from __future__ import annotations

import itertools
import mimetypes
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field

from .errors import (
    AttachmentError,
    FileTooLarge,
    NotEditable,
    PortalError,
    UnsupportedFileType,
    ValidationError,
)
from .logging import get_logger
from .models import Attachment, AttachmentType, TravelOrder

logger = get_logger(__name__)

MAX_ORDER_ATTACHMENT_BYTES = 20 * 1024 * 1024
MAX_SIGNATURE_BYTES = 2 * 1024 * 1024
ORDER_ATTACHMENT_EXTENSIONS = frozenset(
    {".pdf", ".jpg", ".jpeg", ".png", ".gif", ".doc", ".docx"}
)
SIGNATURE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg"})


class UploadFile(BaseModel):
    """A file chosen for upload."""

    file_name: str = Field(..., description="Original file name")
    content: bytes = Field(..., description="Raw file content")
    content_type: str | None = Field(default=None, description="MIME type if known")

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return Path(self.file_name).suffix.lower()

    def guessed_content_type(self) -> str:
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(self.file_name)
        return guessed or "application/octet-stream"


@dataclass(frozen=True)
class AttachmentPolicy:
    """Size and type limits for one class of uploaded files."""

    label: str
    max_bytes: int
    allowed_extensions: frozenset[str]

    def check(self, upload: UploadFile) -> None:
        """Raise when the upload breaks this policy."""

        if upload.extension not in self.allowed_extensions:
            allowed = ", ".join(sorted(self.allowed_extensions))
            raise UnsupportedFileType(
                upload.file_name,
                f"File \"{upload.file_name}\" has an unsupported type. Allowed types: {allowed}",
            )
        if upload.size > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            raise FileTooLarge(
                upload.file_name,
                f"File \"{upload.file_name}\" is too large (max {limit_mb} MB).",
            )


ORDER_ATTACHMENT_POLICY = AttachmentPolicy(
    label="travel order attachment",
    max_bytes=MAX_ORDER_ATTACHMENT_BYTES,
    allowed_extensions=ORDER_ATTACHMENT_EXTENSIONS,
)
SIGNATURE_POLICY = AttachmentPolicy(
    label="director signature",
    max_bytes=MAX_SIGNATURE_BYTES,
    allowed_extensions=SIGNATURE_EXTENSIONS,
)


class FileOutcome(BaseModel):
    """Result of handling one file of a batch."""

    file_name: str
    accepted: bool
    attachment: Attachment | None = None
    error_code: str | None = None
    message: str | None = None

    @classmethod
    def failed(cls, file_name: str, error: PortalError) -> FileOutcome:
        return cls(
            file_name=file_name, accepted=False, error_code=error.code, message=error.message
        )


class BatchResult(BaseModel):
    """Per-file outcomes of an attachment batch; partial success is normal."""

    outcomes: list[FileOutcome] = Field(default_factory=list)

    @property
    def accepted(self) -> list[FileOutcome]:
        return [outcome for outcome in self.outcomes if outcome.accepted]

    @property
    def rejected(self) -> list[FileOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.accepted]


@dataclass
class PendingUpload:
    """A new file staged on a draft, not yet saved."""

    upload: UploadFile
    type: AttachmentType = AttachmentType.OTHER


@dataclass
class AttachmentChangeSet:
    """Attachment edits staged for one draft until the edit is saved.

    New files are checked against the policy as they are staged; removals of
    existing attachments are only marked and can be undone before commit.
    """

    order: TravelOrder
    policy: AttachmentPolicy = ORDER_ATTACHMENT_POLICY
    uploads: list[PendingUpload] = field(default_factory=list)
    removals: list[int] = field(default_factory=list)

    def _ensure_editable(self) -> None:
        if not self.order.is_editable:
            raise NotEditable("Attachments can only be changed while the travel order is a draft.")

    def add(
        self, upload: UploadFile, attachment_type: AttachmentType | None = None
    ) -> FileOutcome:
        """Stage one file, reporting a refusal instead of raising."""

        try:
            self._ensure_editable()
            self.policy.check(upload)
        except (NotEditable, AttachmentError) as exc:
            logger.warning(
                "attachment_refused", file_name=upload.file_name, error_code=exc.code
            )
            return FileOutcome.failed(upload.file_name, exc)
        self.uploads.append(
            PendingUpload(upload=upload, type=attachment_type or AttachmentType.OTHER)
        )
        return FileOutcome(file_name=upload.file_name, accepted=True)

    def add_many(
        self, files: Iterable[tuple[UploadFile, AttachmentType | None]]
    ) -> BatchResult:
        return BatchResult(outcomes=[self.add(upload, kind) for upload, kind in files])

    def set_type(self, index: int, attachment_type: AttachmentType) -> None:
        self.uploads[index].type = attachment_type

    def discard(self, index: int) -> PendingUpload:
        """Drop a staged new file before it is saved."""

        return self.uploads.pop(index)

    def remove(self, attachment_id: int) -> None:
        """Mark an existing attachment for deletion on save."""

        self._ensure_editable()
        if self.order.attachment(attachment_id) is None:
            raise ValidationError(
                "delete_attachment_ids",
                f"Attachment {attachment_id} does not belong to this travel order.",
            )
        if attachment_id not in self.removals:
            self.removals.append(attachment_id)

    def undo_remove(self, attachment_id: int) -> None:
        if attachment_id in self.removals:
            self.removals.remove(attachment_id)

    def is_marked_for_removal(self, attachment_id: int) -> bool:
        return attachment_id in self.removals

    @property
    def has_changes(self) -> bool:
        return bool(self.uploads or self.removals)

    def visible_attachments(self) -> list[Attachment]:
        """Existing attachments that will remain after save."""

        return [a for a in self.order.attachments if a.id not in self.removals]


class AttachmentStore:
    """In-memory blob storage for attachments and signatures."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def put(self, prefix: str, upload: UploadFile) -> str:
        reference = f"{prefix}/{uuid4().hex}{upload.extension}"
        self._blobs[reference] = upload.content
        return reference

    def get(self, reference: str) -> bytes:
        try:
            return self._blobs[reference]
        except KeyError as exc:
            raise FileNotFoundError(f"No stored file for '{reference}'") from exc

    def delete(self, reference: str) -> None:
        self._blobs.pop(reference, None)

    def __contains__(self, reference: object) -> bool:
        return reference in self._blobs


class AttachmentManager:
    """Apply staged attachment edits to draft travel orders."""

    def __init__(
        self,
        store: AttachmentStore | None = None,
        policy: AttachmentPolicy = ORDER_ATTACHMENT_POLICY,
    ) -> None:
        self.store = store or AttachmentStore()
        self.policy = policy

    def begin(self, order: TravelOrder) -> AttachmentChangeSet:
        return AttachmentChangeSet(order=order, policy=self.policy)

    def commit(self, changes: AttachmentChangeSet) -> BatchResult:
        """Delete marked attachments and persist staged files."""

        order = changes.order
        if not order.is_editable:
            error = NotEditable(
                "Attachments can only be changed while the travel order is a draft."
            )
            if changes.removals:
                raise error
            return BatchResult(
                outcomes=[
                    FileOutcome.failed(pending.upload.file_name, error)
                    for pending in changes.uploads
                ]
            )

        kept = []
        for attachment in order.attachments:
            if attachment.id in changes.removals:
                self.store.delete(attachment.file_reference)
                logger.info(
                    "attachment_removed", order_id=order.id, attachment_id=attachment.id
                )
            else:
                kept.append(attachment)
        order.attachments = kept

        outcomes = []
        for pending in changes.uploads:
            try:
                self.policy.check(pending.upload)
            except AttachmentError as exc:
                outcomes.append(FileOutcome.failed(pending.upload.file_name, exc))
                continue
            attachment = Attachment(
                id=self.store.next_id(),
                travel_order_id=order.id or 0,
                file_name=pending.upload.file_name,
                file_reference=self.store.put(f"travel-orders/{order.id}", pending.upload),
                type=pending.type,
                size_bytes=pending.upload.size,
                content_type=pending.upload.guessed_content_type(),
            )
            order.attachments.append(attachment)
            outcomes.append(
                FileOutcome(file_name=attachment.file_name, accepted=True, attachment=attachment)
            )
            logger.info(
                "attachment_added",
                order_id=order.id,
                attachment_id=attachment.id,
                type=attachment.type.value,
                size_bytes=attachment.size_bytes,
            )

        changes.uploads.clear()
        changes.removals.clear()
        return BatchResult(outcomes=outcomes)

    def apply(
        self,
        order: TravelOrder,
        files: Iterable[tuple[UploadFile, AttachmentType | None]] = (),
        removals: Iterable[int] = (),
    ) -> BatchResult:
        """Stage removals and a batch of files, then commit them together.

        Every file's outcome is reported independently; refused files never
        abort the rest of the batch.
        """

        changes = self.begin(order)
        for attachment_id in removals:
            changes.remove(attachment_id)
        staged = changes.add_many(files)
        committed = self.commit(changes)
        committed_iter = iter(committed.outcomes)
        merged = [
            next(committed_iter) if outcome.accepted else outcome
            for outcome in staged.outcomes
        ]
        return BatchResult(outcomes=merged)

    def add_attachments(
        self,
        order: TravelOrder,
        files: Iterable[tuple[UploadFile, AttachmentType | None]],
    ) -> BatchResult:
        return self.apply(order, files)

    def purge(self, order: TravelOrder) -> None:
        """Drop the stored files of every attachment on the order."""

        for attachment in order.attachments:
            self.store.delete(attachment.file_reference)
        order.attachments = []

    def read(self, attachment: Attachment) -> bytes:
        return self.store.get(attachment.file_reference)
