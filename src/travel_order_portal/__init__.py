"""Travel Order Portal - request, routing and director approval of travel orders."""

from .attachments import (
    MAX_ORDER_ATTACHMENT_BYTES,
    MAX_SIGNATURE_BYTES,
    ORDER_ATTACHMENT_POLICY,
    SIGNATURE_POLICY,
    AttachmentChangeSet,
    AttachmentManager,
    AttachmentPolicy,
    BatchResult,
    FileOutcome,
    UploadFile,
)
from .client import DownloadedFile, PortalClient
from .config import PortalConfig
from .editor import DraftEditor
from .errors import (
    ActionInProgress,
    AlreadyTerminal,
    ApiError,
    AuthenticationExpired,
    FileTooLarge,
    InvalidTransition,
    MemberNotFound,
    NetworkError,
    NotAuthorized,
    NotCurrentStep,
    NotEditable,
    NotFound,
    OrderNotFound,
    PortalError,
    UnsupportedFileType,
    ValidationError,
    WorkflowError,
)
from .export import OrderExportService
from .guard import NavigationChoice, UnsavedChangesGuard
from .listing import (
    DEFAULT_PAGE_SIZE,
    PAGE_SIZE_OPTIONS,
    EmptyState,
    ListQuery,
    ListView,
    Page,
    director_history_view,
    page_numbers,
    roster_view,
    travel_order_view,
)
from .logging import setup_logging
from .models import (
    Actor,
    ApprovalStep,
    Attachment,
    AttachmentType,
    Decision,
    DirectorSignature,
    OrderDetail,
    OrderStatus,
    PersonRef,
    RoleName,
    StepRole,
    StepStatus,
    TravelOrder,
    WorkflowAction,
    WorkflowEvent,
)
from .notifications import Notice, NoticeBoard, NoticeLevel
from .review import DirectorReview, ReviewOutcome, ReviewResult
from .security import AuditLog, Permission, SecurityModel
from .service import TravelOrderService
from .session import ActionLocks, Session
from .validation import OrderValidator
from .workflow import (
    TRANSITIONS,
    RoutingDecision,
    WorkflowEngine,
    materialize_chain,
    next_status,
)

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_ORDER_ATTACHMENT_BYTES",
    "MAX_SIGNATURE_BYTES",
    "ORDER_ATTACHMENT_POLICY",
    "PAGE_SIZE_OPTIONS",
    "SIGNATURE_POLICY",
    "TRANSITIONS",
    "ActionInProgress",
    "ActionLocks",
    "Actor",
    "AlreadyTerminal",
    "ApiError",
    "ApprovalStep",
    "Attachment",
    "AttachmentChangeSet",
    "AttachmentManager",
    "AttachmentPolicy",
    "AttachmentType",
    "AuditLog",
    "AuthenticationExpired",
    "BatchResult",
    "Decision",
    "DirectorReview",
    "DirectorSignature",
    "DownloadedFile",
    "DraftEditor",
    "EmptyState",
    "FileOutcome",
    "FileTooLarge",
    "InvalidTransition",
    "ListQuery",
    "ListView",
    "MemberNotFound",
    "NavigationChoice",
    "NetworkError",
    "NotAuthorized",
    "NotCurrentStep",
    "NotEditable",
    "NotFound",
    "Notice",
    "NoticeBoard",
    "NoticeLevel",
    "OrderDetail",
    "OrderExportService",
    "OrderNotFound",
    "OrderStatus",
    "OrderValidator",
    "Page",
    "Permission",
    "PersonRef",
    "PortalClient",
    "PortalConfig",
    "PortalError",
    "ReviewOutcome",
    "ReviewResult",
    "RoleName",
    "RoutingDecision",
    "SecurityModel",
    "Session",
    "StepRole",
    "StepStatus",
    "TravelOrder",
    "TravelOrderService",
    "UnsavedChangesGuard",
    "UnsupportedFileType",
    "UploadFile",
    "ValidationError",
    "WorkflowAction",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowEvent",
    "__version__",
    "director_history_view",
    "materialize_chain",
    "next_status",
    "page_numbers",
    "roster_view",
    "setup_logging",
    "travel_order_view",
]
