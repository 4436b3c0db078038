"""Test configuration for adding src to the import path."""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from travel_order_portal import (
    Actor,
    PortalConfig,
    RoleName,
    Session,
    TravelOrder,
    TravelOrderService,
    UploadFile,
    WorkflowEngine,
)

PERSONNEL_ID = 1
OTHER_PERSONNEL_ID = 2
RECOMMENDER_ID = 10
APPROVER_ID = 11
OUTSIDER_DIRECTOR_ID = 12
ADMIN_ID = 99


class StepClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 2, 1, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def actors() -> dict[int, Actor]:
    people = [
        Actor(
            id=PERSONNEL_ID,
            role=RoleName.PERSONNEL,
            username="mreyes",
            first_name="Maria",
            middle_name="Santos",
            last_name="Reyes",
            position="Engineer II",
            department="Planning",
            contact_information="maria.reyes@example.gov",
        ),
        Actor(
            id=OTHER_PERSONNEL_ID,
            role=RoleName.PERSONNEL,
            username="jcruz",
            first_name="Juan",
            last_name="Cruz",
            department="Finance",
        ),
        Actor(
            id=RECOMMENDER_ID,
            role=RoleName.DIRECTOR,
            username="adelacruz",
            first_name="Ana",
            last_name="Dela Cruz",
            position="Division Chief",
        ),
        Actor(
            id=APPROVER_ID,
            role=RoleName.DIRECTOR,
            username="rsantos",
            first_name="Ramon",
            last_name="Santos",
            position="Regional Director",
        ),
        Actor(
            id=OUTSIDER_DIRECTOR_ID,
            role=RoleName.DIRECTOR,
            username="lgarcia",
            first_name="Lina",
            last_name="Garcia",
        ),
        Actor(id=ADMIN_ID, role=RoleName.ICT_ADMIN, username="ictadmin", name="ICT Admin"),
    ]
    return {actor.id: actor for actor in people}


@pytest.fixture()
def valid_fields() -> dict[str, object]:
    return {
        "travel_purpose": "Regional planning workshop",
        "destination": "Cebu City",
        "official_station": "Regional Office VII",
        "start_date": "2026-02-15",
        "end_date": "2026-02-18",
        "objectives": "Present the annual infrastructure plan",
        "per_diems_expenses": "4500.00",
        "per_diems_note": "Inclusive of lodging",
        "appropriation": "MOOE 2026",
        "remarks": "",
    }


@pytest.fixture()
def service(clock: StepClock, actors: dict[int, Actor]) -> TravelOrderService:
    portal = TravelOrderService(engine=WorkflowEngine(clock=clock))
    for actor in actors.values():
        portal.register_actor(actor)
    return portal


@pytest.fixture()
def upload_factory() -> Callable[..., UploadFile]:
    def _factory(
        file_name: str = "itinerary.pdf",
        size: int = 1024,
        content_type: str | None = None,
    ) -> UploadFile:
        return UploadFile(file_name=file_name, content=b"x" * size, content_type=content_type)

    return _factory


@pytest.fixture()
def order_factory() -> Callable[..., TravelOrder]:
    def _factory(**overrides: object) -> TravelOrder:
        data: dict[str, object] = {
            "id": 7,
            "requester_id": PERSONNEL_ID,
            "travel_purpose": "Regional planning workshop",
            "destination": "Cebu City",
            "start_date": date(2026, 2, 15),
            "end_date": date(2026, 2, 18),
            "objectives": "Present the annual infrastructure plan",
            "per_diems_expenses": Decimal("4500.00"),
            "appropriation": "MOOE 2026",
        }
        data.update(overrides)
        return TravelOrder(**data)

    return _factory


@pytest.fixture()
def submitted_order(
    service: TravelOrderService, valid_fields: dict[str, object]
) -> Callable[..., TravelOrder]:
    """Create and submit a draft, with a recommender unless ``two_step`` is false."""

    def _submit(two_step: bool = True) -> TravelOrder:
        draft, _ = service.create_draft(PERSONNEL_ID, valid_fields)
        routing: dict[str, object] = {"approving_director_id": APPROVER_ID}
        if two_step:
            routing["recommending_director_id"] = RECOMMENDER_ID
        assert draft.id is not None
        return service.submit(draft.id, PERSONNEL_ID, routing)

    return _submit


class ServiceClient:
    """Stand-in for ``PortalClient`` that answers from an in-memory service.

    Method names and return values match the HTTP client, so controllers can
    be exercised end to end without a transport.
    """

    def __init__(self, service: TravelOrderService, actor_id: int) -> None:
        self.service = service
        self.session = Session(token="test-token", user=service.actor(actor_id))
        self.config = PortalConfig()
        self.calls: list[str] = []

    @property
    def actor_id(self) -> int:
        assert self.session.user is not None
        return self.session.user.id

    def create_draft(self, fields, uploads=()):
        self.calls.append("create_draft")
        order, _ = self.service.create_draft(self.actor_id, fields, uploads)
        return order

    def update_draft(self, order_id, fields, uploads=(), delete_attachment_ids=()):
        self.calls.append("update_draft")
        order, _ = self.service.update_draft(
            order_id, self.actor_id, fields, uploads, delete_attachment_ids
        )
        return order

    def delete_draft(self, order_id):
        self.calls.append("delete_draft")
        self.service.delete_draft(order_id, self.actor_id)

    def submit(self, order_id, routing):
        self.calls.append("submit")
        return self.service.submit(order_id, self.actor_id, routing)

    def get_order(self, order_id, role=None):
        self.calls.append("get_order")
        return self.service.get_order(order_id, self.actor_id)

    def order_detail(self, order_id):
        self.calls.append("order_detail")
        return self.service.get_order_detail(order_id, self.actor_id)

    def act(self, order_id, decision, remarks=None):
        self.calls.append("act")
        return self.service.act(order_id, self.actor_id, decision, remarks)


@pytest.fixture()
def client_for(service: TravelOrderService) -> Callable[[int], ServiceClient]:
    def _factory(actor_id: int) -> ServiceClient:
        return ServiceClient(service, actor_id)

    return _factory
