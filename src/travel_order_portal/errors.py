"""Error taxonomy shared by the workflow service and the API client.

Every error carries a stable ``code`` and the HTTP status the backend answers
with, so the same classes can be rendered into the error envelope on the
server side and rebuilt from it on the client side.
"""

from __future__ import annotations

from typing import Any, ClassVar


class PortalError(Exception):
    """Base class for all travel order portal errors."""

    code: ClassVar[str] = "error"
    status_code: ClassVar[int] = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_envelope(self) -> dict[str, Any]:
        """Render the error envelope returned by the API."""

        return {"success": False, "message": self.message, "code": self.code}


class ValidationError(PortalError):
    """A required field is missing or a cross-field rule is violated."""

    code = "validation_error"
    status_code = 422

    def __init__(
        self,
        field: str,
        message: str,
        errors: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.errors = errors or {field: [message]}

    def to_envelope(self) -> dict[str, Any]:
        envelope = super().to_envelope()
        envelope["errors"] = self.errors
        return envelope


class WorkflowError(PortalError):
    """A workflow action was rejected by the state machine."""

    code = "workflow_error"
    status_code = 409


class InvalidTransition(WorkflowError):
    """The order's status has no transition for the requested action."""

    code = "invalid_transition"


class AlreadyTerminal(InvalidTransition):
    """The order is already approved or rejected."""

    code = "already_terminal"


class NotCurrentStep(WorkflowError):
    """The acting director's step is not the chain's current step."""

    code = "not_current_step"


class NotAuthorized(WorkflowError, PermissionError):
    """The actor is not allowed to perform the operation."""

    code = "not_authorized"
    status_code = 403


class NotEditable(WorkflowError):
    """The order is no longer a draft and cannot be changed."""

    code = "not_editable"


class AttachmentError(PortalError):
    """A single file was refused by an attachment policy."""

    code = "attachment_error"

    def __init__(self, file_name: str, message: str) -> None:
        super().__init__(message)
        self.file_name = file_name


class FileTooLarge(AttachmentError):
    code = "file_too_large"
    status_code = 413


class UnsupportedFileType(AttachmentError):
    code = "unsupported_file_type"
    status_code = 415


class NotFound(PortalError, LookupError):
    code = "not_found"
    status_code = 404


class OrderNotFound(NotFound):
    """No travel order or attachment with the given id."""


class MemberNotFound(NotFound):
    """No managed director or personnel account with the given id."""


class ApiError(PortalError):
    """The API answered with an error that has no more specific mapping."""

    code = "api_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        errors: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.http_status = status_code
        self.errors = errors or {}


class AuthenticationExpired(ApiError):
    """The bearer token was rejected as unauthenticated, invalid or expired."""

    code = "unauthenticated"
    status_code = 401


class NetworkError(PortalError):
    """The request failed before any server response was received."""

    code = "network_error"
    status_code = 503


class ActionInProgress(PortalError):
    """The same action is already in flight for this record."""

    code = "action_in_progress"
    status_code = 429


# Errors raised when the client's view of an order is stale; callers re-fetch.
STALE_STATE_ERRORS: tuple[type[PortalError], ...] = (
    NotCurrentStep,
    AlreadyTerminal,
    NotAuthorized,
)

_ERRORS_BY_CODE: dict[str, type[PortalError]] = {
    cls.code: cls
    for cls in (
        InvalidTransition,
        AlreadyTerminal,
        NotCurrentStep,
        NotAuthorized,
        NotEditable,
        FileTooLarge,
        UnsupportedFileType,
        OrderNotFound,
    )
}


def error_class_for_code(code: str | None) -> type[PortalError] | None:
    """Return the error class registered for an envelope ``code``."""

    if code is None:
        return None
    return _ERRORS_BY_CODE.get(code)
