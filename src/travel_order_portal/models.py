"""Core models for travel orders, approval steps and attachments."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    """Status of a travel order."""

    DRAFT = "draft"
    PENDING = "pending"
    RECOMMENDED = "recommended"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.APPROVED, OrderStatus.REJECTED)


class StepStatus(str, Enum):
    """Status of a single approval step."""

    PENDING = "pending"
    RECOMMENDED = "recommended"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepRole(str, Enum):
    """Role a director plays in the approval chain."""

    RECOMMEND = "recommend"
    APPROVE = "approve"


class Decision(str, Enum):
    """Decision a director records on their approval step."""

    RECOMMEND = "recommend"
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def step_status(self) -> StepStatus:
        """Return the step status recorded for this decision."""

        return {
            Decision.RECOMMEND: StepStatus.RECOMMENDED,
            Decision.APPROVE: StepStatus.APPROVED,
            Decision.REJECT: StepStatus.REJECTED,
        }[self]


class WorkflowAction(str, Enum):
    """Actions recorded in a travel order's audit history."""

    SUBMIT = "submit"
    RECOMMEND = "recommend"
    APPROVE = "approve"
    REJECT = "reject"


class AttachmentType(str, Enum):
    """Kinds of supporting documents attached to a travel order."""

    ITINERARY = "itinerary"
    MEMORANDUM = "memorandum"
    INVITATION = "invitation"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _ATTACHMENT_LABELS[self]


_ATTACHMENT_LABELS = {
    AttachmentType.ITINERARY: "Proposed Itinerary",
    AttachmentType.MEMORANDUM: "Memorandum",
    AttachmentType.INVITATION: "Invitation / Notice of Meeting",
    AttachmentType.OTHER: "Other",
}


class RoleName(str, Enum):
    """Roles of portal users."""

    PERSONNEL = "personnel"
    DIRECTOR = "director"
    ICT_ADMIN = "ict_admin"

    @property
    def route_prefix(self) -> str:
        """Return the API path prefix used for this role."""

        return {
            RoleName.PERSONNEL: "personnel",
            RoleName.DIRECTOR: "directors",
            RoleName.ICT_ADMIN: "ict-admin",
        }[self]


class PersonRef(BaseModel):
    """Display summary of a person embedded in API payloads."""

    id: int = Field(..., description="User identifier")
    username: str | None = Field(default=None, description="Login name")
    first_name: str | None = Field(default=None, description="Given name")
    middle_name: str | None = Field(default=None, description="Middle name")
    last_name: str | None = Field(default=None, description="Family name")
    name: str | None = Field(default=None, description="Legacy single-field name")
    position: str | None = Field(default=None, description="Job position")
    department: str | None = Field(default=None, description="Department")

    model_config = ConfigDict(extra="ignore")

    @property
    def display_name(self) -> str:
        """Return "First Middle Last", falling back to name or username."""

        if self.first_name and self.last_name:
            parts = [self.first_name]
            if self.middle_name:
                parts.append(self.middle_name)
            parts.append(self.last_name)
            return " ".join(parts)
        return self.name or self.username or ""


class Actor(PersonRef):
    """A portal user: personnel, director or ICT administrator."""

    role: RoleName = Field(..., description="Portal role")
    contact_information: str | None = Field(
        default=None, description="Phone or email shown on rosters"
    )
    is_active: bool = Field(default=True, description="Whether the account is active")
    reason_for_deactivation: str | None = Field(
        default=None, description="Why an inactive account was deactivated"
    )

    def ref(self) -> PersonRef:
        """Return the embeddable summary for this actor."""

        return PersonRef.model_validate(self.model_dump(exclude={"role"}))


class Attachment(BaseModel):
    """A file attached to a travel order."""

    id: int = Field(..., description="Attachment identifier")
    travel_order_id: int = Field(..., description="Owning travel order")
    file_name: str = Field(..., description="Original file name")
    file_reference: str = Field(..., description="Storage reference for the file")
    type: AttachmentType = Field(
        default=AttachmentType.OTHER, description="Kind of supporting document"
    )
    size_bytes: int = Field(default=0, ge=0, description="File size in bytes")
    content_type: str | None = Field(default=None, description="MIME type")


class ApprovalStep(BaseModel):
    """One director's step in a travel order's approval chain."""

    step_order: int = Field(..., ge=1, le=2, description="Position in the chain")
    role: StepRole = Field(..., description="Recommending or approving step")
    director_id: int = Field(..., description="Director bound to this step")
    director: PersonRef | None = Field(
        default=None, description="Embedded director summary"
    )
    status: StepStatus = Field(default=StepStatus.PENDING, description="Step outcome")
    remarks: str | None = Field(default=None, description="Director remarks")
    acted_at: datetime | None = Field(
        default=None, description="When the director acted on the step"
    )

    @property
    def has_acted(self) -> bool:
        return self.acted_at is not None


class WorkflowEvent(BaseModel):
    """Immutable audit record for one workflow action on a travel order."""

    actor_id: int = Field(..., description="User who performed the action")
    action: WorkflowAction = Field(..., description="Action performed")
    step_order: int | None = Field(
        default=None, description="Approval step acted on, if any"
    )
    previous_status: OrderStatus = Field(..., description="Status before the action")
    new_status: OrderStatus = Field(..., description="Status after the action")
    remarks: str | None = Field(default=None, description="Remarks given with the action")
    timestamp: datetime = Field(..., description="When the action was recorded")

    model_config = ConfigDict(frozen=True)


class TravelOrder(BaseModel):
    """A travel order request and its approval state."""

    id: int | None = Field(default=None, description="Travel order identifier")
    requester_id: int = Field(..., description="Personnel who owns the order")
    requester: PersonRef | None = Field(
        default=None, description="Embedded requester summary"
    )
    travel_purpose: str | None = Field(default=None, description="Purpose of travel")
    destination: str | None = Field(default=None, description="Travel destination")
    official_station: str | None = Field(
        default=None, description="Requester's official station"
    )
    start_date: date | None = Field(default=None, description="First day of travel")
    end_date: date | None = Field(default=None, description="Last day of travel")
    objectives: str | None = Field(default=None, description="Objectives of the travel")
    per_diems_expenses: Annotated[Decimal, Field(ge=0)] | None = Field(
        default=None, description="Per diems and expenses amount"
    )
    per_diems_note: str | None = Field(default=None, description="Per diems note")
    assistant_or_laborers_allowed: str | None = Field(
        default=None, description="Assistants or laborers allowed"
    )
    appropriation: str | None = Field(
        default=None, description="Appropriation charged for the travel"
    )
    remarks: str | None = Field(default=None, description="Free-form remarks")
    status: OrderStatus = Field(default=OrderStatus.DRAFT, description="Current status")
    submitted_at: datetime | None = Field(default=None, description="Submission time")
    created_at: datetime | None = Field(default=None, description="Creation time")
    updated_at: datetime | None = Field(default=None, description="Last update time")
    attachments: list[Attachment] = Field(
        default_factory=list, description="Supporting documents"
    )
    approvals: list[ApprovalStep] = Field(
        default_factory=list, description="Approval chain ordered by step_order"
    )
    history: tuple[WorkflowEvent, ...] = Field(
        default_factory=tuple, description="Append-only audit log of workflow actions"
    )

    model_config = ConfigDict(extra="ignore")

    @property
    def is_editable(self) -> bool:
        return self.status == OrderStatus.DRAFT

    @property
    def current_step_order(self) -> int | None:
        """Return the step awaiting action: 1 while pending, 2 while recommended."""

        if self.status == OrderStatus.PENDING:
            return 1
        if self.status == OrderStatus.RECOMMENDED:
            return 2
        return None

    @property
    def current_step(self) -> ApprovalStep | None:
        step_order = self.current_step_order
        if step_order is None:
            return None
        return next(
            (step for step in self.approvals if step.step_order == step_order), None
        )

    def steps_for(self, director_id: int) -> list[ApprovalStep]:
        """Return the approval steps bound to a director."""

        return [step for step in self.approvals if step.director_id == director_id]

    def attachment(self, attachment_id: int) -> Attachment | None:
        return next((a for a in self.attachments if a.id == attachment_id), None)

    def duration_days(self) -> int | None:
        """Calculate the travel duration in days, inclusive."""

        if self.start_date is None or self.end_date is None:
            return None
        return (self.end_date - self.start_date).days + 1

    @property
    def personnel_name(self) -> str:
        return self.requester.display_name if self.requester else ""


class OrderDetail(BaseModel):
    """A travel order as returned to a director with its current step."""

    travel_order: TravelOrder
    current_approval: ApprovalStep | None = None


class DirectorSignature(BaseModel):
    """A director's signature image, stamped on exported travel orders."""

    director_id: int = Field(..., description="Director who owns the signature")
    file_name: str = Field(..., description="Uploaded file name")
    file_reference: str = Field(..., description="Storage reference for the image")
    content_type: str | None = Field(default=None, description="Image MIME type")
    size_bytes: int = Field(default=0, ge=0, description="Image size in bytes")
    updated_at: datetime | None = Field(default=None, description="Last upload time")
