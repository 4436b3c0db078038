"""Travel order state machine and approval chain materialization.

The transition table below is the only place that decides which status an
order moves to. ``WorkflowEngine`` validates the actor and the current step,
looks the move up in the table, and applies the side effects: approval step
updates, audit timestamps and an entry in the order's history.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import BaseModel, Field, model_validator

from .errors import (
    AlreadyTerminal,
    InvalidTransition,
    NotAuthorized,
    NotCurrentStep,
    ValidationError,
)
from .logging import get_logger
from .models import (
    ApprovalStep,
    Decision,
    OrderStatus,
    StepRole,
    StepStatus,
    TravelOrder,
    WorkflowAction,
    WorkflowEvent,
)
from .validation import OrderValidator

logger = get_logger(__name__)


@dataclass(frozen=True)
class Transition:
    """A legal status change for a workflow action."""

    source: OrderStatus
    action: WorkflowAction
    role: StepRole | None
    target: OrderStatus


TRANSITIONS: tuple[Transition, ...] = (
    Transition(OrderStatus.DRAFT, WorkflowAction.SUBMIT, None, OrderStatus.PENDING),
    Transition(
        OrderStatus.PENDING, WorkflowAction.RECOMMEND, StepRole.RECOMMEND, OrderStatus.RECOMMENDED
    ),
    Transition(
        OrderStatus.PENDING, WorkflowAction.REJECT, StepRole.RECOMMEND, OrderStatus.REJECTED
    ),
    Transition(
        OrderStatus.PENDING, WorkflowAction.APPROVE, StepRole.APPROVE, OrderStatus.APPROVED
    ),
    Transition(
        OrderStatus.PENDING, WorkflowAction.REJECT, StepRole.APPROVE, OrderStatus.REJECTED
    ),
    Transition(
        OrderStatus.RECOMMENDED, WorkflowAction.APPROVE, StepRole.APPROVE, OrderStatus.APPROVED
    ),
    Transition(
        OrderStatus.RECOMMENDED, WorkflowAction.REJECT, StepRole.APPROVE, OrderStatus.REJECTED
    ),
)

_TRANSITION_INDEX = {(t.source, t.action, t.role): t.target for t in TRANSITIONS}


def next_status(
    current: OrderStatus, action: WorkflowAction, role: StepRole | None = None
) -> OrderStatus:
    """Look up the status an action moves an order to."""

    if current.is_terminal:
        raise AlreadyTerminal(f"Travel order is already {current.value}.")
    target = _TRANSITION_INDEX.get((current, action, role))
    if target is None:
        role_text = f" at a {role.value} step" if role is not None else ""
        raise InvalidTransition(
            f"Cannot {action.value}{role_text} a travel order that is {current.value}."
        )
    return target


def allowed_decisions(role: StepRole) -> tuple[Decision, ...]:
    """Return the decisions a director may record at a step with this role."""

    if role == StepRole.RECOMMEND:
        return (Decision.RECOMMEND, Decision.REJECT)
    return (Decision.APPROVE, Decision.REJECT)


class RoutingDecision(BaseModel):
    """Directors chosen for an order's approval chain at submission."""

    approving_director_id: int = Field(..., description="Director who approves")
    recommending_director_id: int | None = Field(
        default=None, description="Optional director who recommends first"
    )

    @model_validator(mode="after")
    def _distinct_directors(self) -> RoutingDecision:
        if self.recommending_director_id == self.approving_director_id:
            msg = "Recommending and approving directors must be different people"
            raise ValueError(msg)
        return self

    def director_ids(self) -> list[int]:
        """Return the chain's directors in step order."""

        if self.recommending_director_id is None:
            return [self.approving_director_id]
        return [self.recommending_director_id, self.approving_director_id]


def materialize_chain(director_ids: list[int]) -> list[ApprovalStep]:
    """Create pending approval steps numbered contiguously from 1."""

    if not 1 <= len(director_ids) <= 2:
        raise ValueError("An approval chain has one or two steps")
    if len(set(director_ids)) != len(director_ids):
        raise ValueError("A director may hold only one step of a chain")

    steps = []
    for index, director_id in enumerate(director_ids, start=1):
        is_last = index == len(director_ids)
        steps.append(
            ApprovalStep(
                step_order=index,
                role=StepRole.APPROVE if is_last else StepRole.RECOMMEND,
                director_id=director_id,
                status=StepStatus.PENDING,
                acted_at=None,
            )
        )
    return steps


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class WorkflowEngine:
    """Validate and apply submit and approval actions on travel orders."""

    validator: OrderValidator = field(default_factory=OrderValidator.default)
    clock: Callable[[], datetime] = _utcnow

    def submit(
        self, order: TravelOrder, routing: RoutingDecision, *, actor_id: int
    ) -> TravelOrder:
        """Move a complete draft to pending and create its approval chain."""

        if actor_id != order.requester_id:
            raise NotAuthorized("Only the requester can submit this travel order.")
        target = next_status(order.status, WorkflowAction.SUBMIT)
        self.validator.ensure_order_valid(order)

        try:
            steps = materialize_chain(routing.director_ids())
        except ValueError as exc:
            raise ValidationError("recommending_director_id", str(exc)) from exc

        now = self.clock()
        event = WorkflowEvent(
            actor_id=actor_id,
            action=WorkflowAction.SUBMIT,
            previous_status=order.status,
            new_status=target,
            timestamp=now,
        )
        order.approvals = steps
        order.status = target
        order.submitted_at = now
        order.updated_at = now
        order.history = (*order.history, event)
        logger.info(
            "travel_order_submitted",
            order_id=order.id,
            chain_length=len(steps),
            directors=routing.director_ids(),
        )
        return order

    def current_step_for(self, order: TravelOrder, director_id: int) -> ApprovalStep:
        """Return the step the director may act on now, or raise why not."""

        if order.status.is_terminal:
            raise AlreadyTerminal(f"Travel order is already {order.status.value}.")
        current_order = order.current_step_order
        if current_order is None:
            raise InvalidTransition(
                f"Travel order is {order.status.value} and has no approval step to act on."
            )

        bound = order.steps_for(director_id)
        if not bound:
            raise NotAuthorized("You are not a director on this travel order's approval chain.")
        matches = [step for step in bound if step.step_order == current_order]
        if len(matches) != 1 or matches[0].status != StepStatus.PENDING:
            raise NotCurrentStep("It is not your turn to act on this travel order.")
        return matches[0]

    def act(
        self,
        order: TravelOrder,
        director_id: int,
        decision: Decision,
        remarks: str | None = None,
    ) -> TravelOrder:
        """Record a director's decision on the current step."""

        step = self.current_step_for(order, director_id)
        if decision not in allowed_decisions(step.role):
            allowed = ", ".join(d.value for d in allowed_decisions(step.role))
            raise ValidationError(
                "action", f"This step accepts only: {allowed}."
            )

        action = WorkflowAction(decision.value)
        previous = order.status
        target = next_status(previous, action, step.role)
        now = self.clock()
        cleaned_remarks = remarks.strip() if remarks and remarks.strip() else None

        step.status = decision.step_status
        step.remarks = cleaned_remarks
        step.acted_at = now
        order.status = target
        order.updated_at = now
        order.history = (
            *order.history,
            WorkflowEvent(
                actor_id=director_id,
                action=action,
                step_order=step.step_order,
                previous_status=previous,
                new_status=target,
                remarks=cleaned_remarks,
                timestamp=now,
            ),
        )
        logger.info(
            "travel_order_action",
            order_id=order.id,
            director_id=director_id,
            step_order=step.step_order,
            decision=decision.value,
            previous_status=previous.value,
            new_status=target.value,
        )
        return order
