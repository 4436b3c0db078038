"""Director review of one travel order."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .client import PortalClient
from .errors import (
    STALE_STATE_ERRORS,
    NotAuthorized,
    OrderNotFound,
    PortalError,
)
from .logging import get_logger
from .models import ApprovalStep, Decision, OrderDetail, TravelOrder
from .notifications import NoticeBoard
from .session import ActionLocks
from .workflow import allowed_decisions

logger = get_logger(__name__)

PENDING_LIST_PATH = "/pending-reviews"

_DONE_MESSAGES = {
    Decision.RECOMMEND: "Travel order recommended.",
    Decision.APPROVE: "Travel order approved.",
    Decision.REJECT: "Travel order rejected.",
}


class ReviewOutcome(StrEnum):
    DONE = "done"
    STALE = "stale"


@dataclass(frozen=True)
class ReviewResult:
    outcome: ReviewOutcome
    order: TravelOrder | None
    redirect_to: str | None = None
    error: PortalError | None = None


class DirectorReview:
    """Show an order to its director and record their decision.

    The displayed order is always the last one fetched from the server. A
    decision is never applied locally; after any answer the order is fetched
    again, and a stale-state refusal sends the director back to the list.
    """

    def __init__(
        self,
        client: PortalClient,
        locks: ActionLocks,
        notices: NoticeBoard,
    ) -> None:
        self.client = client
        self.locks = locks
        self.notices = notices
        self.detail: OrderDetail | None = None

    @property
    def order(self) -> TravelOrder | None:
        return self.detail.travel_order if self.detail else None

    @property
    def current_step(self) -> ApprovalStep | None:
        return self.detail.current_approval if self.detail else None

    def load(self, order_id: int) -> OrderDetail:
        self.detail = self.client.order_detail(order_id)
        return self.detail

    def _refresh(self, order_id: int) -> None:
        try:
            self.load(order_id)
        except (NotAuthorized, OrderNotFound):
            self.detail = None

    def allowed_decisions(self) -> tuple[Decision, ...]:
        """Decisions the signed-in director may take now; empty when none."""

        order = self.order
        step = self.current_step
        user = self.client.session.user
        if order is None or step is None or order.status.is_terminal:
            return ()
        if step.has_acted or user is None or step.director_id != user.id:
            return ()
        return allowed_decisions(step.role)

    def is_busy(self) -> bool:
        order = self.order
        return order is not None and self.locks.is_busy(("act", order.id))

    def act(self, decision: Decision, remarks: str | None = None) -> ReviewResult:
        """Send the decision and re-render from the server's answer."""

        if self.order is None or self.order.id is None:
            raise ValueError("Load an order before acting on it")
        order_id = self.order.id

        with self.locks.hold(("act", order_id)):
            try:
                self.client.act(order_id, decision, remarks)
            except STALE_STATE_ERRORS as exc:
                logger.info(
                    "review_state_stale", order_id=order_id, code=exc.code
                )
                self.notices.warning(exc.message, exc.code)
                self._refresh(order_id)
                return ReviewResult(
                    outcome=ReviewOutcome.STALE,
                    order=self.order,
                    redirect_to=PENDING_LIST_PATH,
                    error=exc,
                )
            except PortalError as exc:
                self.notices.from_error(exc)
                raise

        self._refresh(order_id)
        self.notices.success(_DONE_MESSAGES[decision])
        return ReviewResult(
            outcome=ReviewOutcome.DONE, order=self.order, redirect_to=PENDING_LIST_PATH
        )
