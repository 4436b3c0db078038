"""Tests for the HTTP client using httpx's mock transport."""

from __future__ import annotations

import json
from collections.abc import Callable
from urllib.parse import parse_qs

import httpx
import pytest

from travel_order_portal.attachments import UploadFile
from travel_order_portal.client import PortalClient
from travel_order_portal.config import PortalConfig
from travel_order_portal.errors import (
    AlreadyTerminal,
    ApiError,
    AuthenticationExpired,
    FileTooLarge,
    NetworkError,
    NotAuthorized,
    NotCurrentStep,
    OrderNotFound,
    ValidationError,
    WorkflowError,
)
from travel_order_portal.listing import EmptyState, ListQuery
from travel_order_portal.models import Actor, AttachmentType, Decision, OrderStatus, RoleName
from travel_order_portal.session import Session
from travel_order_portal.workflow import RoutingDecision

Handler = Callable[[httpx.Request], httpx.Response]

ORDER_PAYLOAD = {
    "id": 7,
    "requester_id": 1,
    "status": "draft",
    "travel_purpose": "Regional planning workshop",
    "destination": "Cebu City",
    "start_date": "2026-02-15",
    "end_date": "2026-02-18",
}


class Recorder:
    """Mock transport handler that records requests and replays responses.

    Responses are replayed in order; the last one answers every later request.
    """

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture()
def expired() -> list[str]:
    return []


@pytest.fixture()
def session(expired: list[str]) -> Session:
    session = Session(on_expired=lambda: expired.append("login"))
    session.sign_in("secret-token", Actor(id=1, role=RoleName.PERSONNEL))
    return session


@pytest.fixture()
def make_client(session: Session) -> Callable[[Recorder], PortalClient]:
    def _make(recorder: Recorder) -> PortalClient:
        return PortalClient(
            session,
            config=PortalConfig(api_base_url="http://portal.test/api"),
            transport=httpx.MockTransport(recorder),
        )

    return _make


def ok(data: object, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"success": True, "data": data})


class TestRequests:
    def test_bearer_token_and_prefix(self, make_client) -> None:
        recorder = Recorder(ok(ORDER_PAYLOAD))

        order = make_client(recorder).get_order(7)

        assert order.status == OrderStatus.DRAFT
        assert recorder.last.url.path == "/api/personnel/travel-orders/7"
        assert recorder.last.headers["Authorization"] == "Bearer secret-token"

    def test_list_params_and_pagination(self, make_client) -> None:
        recorder = Recorder(
            ok(
                {
                    "items": [{**ORDER_PAYLOAD, "status": "pending"}],
                    "pagination": {"total": 11, "current_page": 2, "per_page": 10},
                }
            )
        )

        page = make_client(recorder).pending_orders(ListQuery(search="cebu", page=2))

        params = recorder.last.url.params
        assert recorder.last.url.path == "/api/directors/travel-orders/pending"
        assert (params["search"], params["page"], params["per_page"]) == ("cebu", "2", "10")
        assert page.summary == "Showing 11-11 of 11"
        assert page.items[0].status == OrderStatus.PENDING

    def test_empty_history_with_filter(self, make_client) -> None:
        recorder = Recorder(ok({"items": [], "pagination": {"total": 0}}))

        page = make_client(recorder).history(ListQuery(status="approved"))

        assert recorder.last.url.params["status"] == "approved"
        assert page.empty_state == EmptyState.NO_MATCHES

    def test_page_past_the_end_is_fetched_as_the_last_page(self, make_client) -> None:
        recorder = Recorder(
            ok({"items": [], "pagination": {"total": 25, "current_page": 99, "per_page": 10}}),
            ok(
                {
                    "items": [{**ORDER_PAYLOAD, "id": n} for n in range(21, 26)],
                    "pagination": {"total": 25, "current_page": 3, "per_page": 10},
                }
            ),
        )

        page = make_client(recorder).my_orders(ListQuery(page=99))

        assert [r.url.params["page"] for r in recorder.requests] == ["99", "3"]
        assert (page.page, page.last_page) == (3, 3)
        assert page.summary == "Showing 21-25 of 25"

    def test_roster_items_get_role(self, make_client) -> None:
        recorder = Recorder(ok({"items": [{"id": 4, "first_name": "Ana"}]}))

        page = make_client(recorder).directors_roster()

        assert page.items[0].role == RoleName.DIRECTOR
        assert recorder.last.url.path == "/api/ict-admin/directors"

    def test_create_member_posts_the_form(self, make_client) -> None:
        recorder = Recorder(
            ok({"user": {"id": 30, "username": "pmorales", "first_name": "Pia"}}, 201)
        )

        member = make_client(recorder).create_member(
            RoleName.DIRECTOR,
            {"username": "pmorales", "first_name": "Pia", "middle_name": None},
        )

        form = parse_qs(recorder.last.read().decode())
        assert recorder.last.method == "POST"
        assert recorder.last.url.path == "/api/ict-admin/directors"
        assert form == {"username": ["pmorales"], "first_name": ["Pia"]}
        assert (member.id, member.role) == (30, RoleName.DIRECTOR)

    def test_deactivate_member_sends_flag_and_reason(self, make_client) -> None:
        recorder = Recorder(
            ok(
                {
                    "id": 4,
                    "first_name": "Juan",
                    "is_active": False,
                    "reason_for_deactivation": "Retired",
                }
            )
        )

        member = make_client(recorder).deactivate_member(RoleName.PERSONNEL, 4, "Retired")

        form = parse_qs(recorder.last.read().decode())
        assert recorder.last.url.path == "/api/ict-admin/personnel/4"
        assert form["_method"] == ["PUT"]
        assert form["is_active"] == ["0"]
        assert form["reason_for_deactivation"] == ["Retired"]
        assert member.role == RoleName.PERSONNEL
        assert not member.is_active

    def test_admin_accounts_have_no_roster(self, make_client) -> None:
        recorder = Recorder(ok({}))

        with pytest.raises(ValueError):
            make_client(recorder).roster(RoleName.ICT_ADMIN)

        assert recorder.requests == []

    def test_create_draft_is_multipart(self, make_client) -> None:
        recorder = Recorder(ok({"travel_order": ORDER_PAYLOAD}, status_code=201))
        upload = UploadFile(file_name="itinerary.pdf", content=b"%PDF-1.4")

        order = make_client(recorder).create_draft(
            {"destination": "Cebu City", "remarks": None},
            [(upload, AttachmentType.ITINERARY), (upload, None)],
        )

        body = recorder.last.read()
        assert order.id == 7
        assert recorder.last.method == "POST"
        assert body.count(b'name="attachments[]"; filename="itinerary.pdf"') == 2
        assert body.count(b'name="attachment_types[]"') == 2
        assert b"itinerary" in body and b"\r\nother\r\n" in body
        assert b'name="remarks"' not in body

    def test_update_draft_sends_method_override_and_removals(self, make_client) -> None:
        recorder = Recorder(ok(ORDER_PAYLOAD))

        make_client(recorder).update_draft(7, {"destination": "Cebu City"}, (), [3, 5])

        form = parse_qs(recorder.last.read().decode())
        assert recorder.last.url.path == "/api/personnel/travel-orders/7"
        assert form["_method"] == ["PUT"]
        assert form["delete_attachment_ids[]"] == ["3", "5"]

    def test_submit_posts_routing(self, make_client) -> None:
        recorder = Recorder(ok({**ORDER_PAYLOAD, "status": "pending"}))

        order = make_client(recorder).submit(7, RoutingDecision(approving_director_id=11))

        assert json.loads(recorder.last.read()) == {"approving_director_id": 11}
        assert order.status == OrderStatus.PENDING

    def test_act_trims_remarks(self, make_client) -> None:
        recorder = Recorder(ok({**ORDER_PAYLOAD, "status": "approved"}))
        client = make_client(recorder)

        client.act(7, Decision.APPROVE, "  Good to go  ")
        assert json.loads(recorder.last.read()) == {"action": "approve", "remarks": "Good to go"}

        client.act(7, Decision.REJECT, "   ")
        assert json.loads(recorder.last.read()) == {"action": "reject", "remarks": None}

    def test_signature_too_large_never_leaves_the_client(self, make_client) -> None:
        recorder = Recorder(ok(None))
        big = UploadFile(file_name="sig.png", content=b"x" * (2 * 1024 * 1024 + 1))

        with pytest.raises(FileTooLarge):
            make_client(recorder).upload_signature(big)

        assert recorder.requests == []

    def test_remove_signature_flag(self, make_client) -> None:
        recorder = Recorder(ok(None))

        make_client(recorder).remove_signature()

        assert parse_qs(recorder.last.read().decode()) == {"remove_signature": ["1"]}


class TestDownloads:
    def test_filename_from_content_disposition(self, make_client) -> None:
        recorder = Recorder(
            httpx.Response(
                200,
                content=b"%PDF-1.4",
                headers={
                    "content-type": "application/pdf",
                    "content-disposition": 'attachment; filename="TRAVEL_ORDER_7_CTT.pdf"',
                },
            )
        )

        file = make_client(recorder).export_order(7, include_ctt=True, role=RoleName.DIRECTOR)

        assert recorder.last.url.path == "/api/directors/travel-orders/7/export/pdf"
        assert recorder.last.url.params["include_ctt"] == "1"
        assert file.file_name == "TRAVEL_ORDER_7_CTT.pdf"
        assert file.content == b"%PDF-1.4"

    def test_fallback_filename(self, make_client) -> None:
        recorder = Recorder(httpx.Response(200, content=b"PK"))

        client = make_client(recorder)

        assert client.export_order(7, "excel").file_name == "TRAVEL_ORDER_7.xlsx"
        assert client.download_attachment(3).file_name == "attachment-3"
        assert recorder.last.url.path == (
            "/api/personnel/travel-order-attachments/3/download"
        )


class TestErrors:
    @pytest.mark.parametrize(
        ("status", "payload", "expected"),
        [
            (409, {"code": "not_current_step", "message": "Not your turn"}, NotCurrentStep),
            (409, {"code": "already_terminal", "message": "Done"}, AlreadyTerminal),
            (409, {"message": "Conflict"}, WorkflowError),
            (403, {"message": "Forbidden"}, NotAuthorized),
            (404, {"message": "Missing"}, OrderNotFound),
            (413, {"message": "Too large"}, FileTooLarge),
            (500, {"message": "Boom"}, ApiError),
        ],
    )
    def test_error_mapping(self, make_client, status, payload, expected) -> None:
        recorder = Recorder(httpx.Response(status, json={"success": False, **payload}))

        with pytest.raises(expected) as excinfo:
            make_client(recorder).get_order(7)

        assert excinfo.value.message == payload["message"]

    def test_validation_errors_name_the_field(self, make_client) -> None:
        recorder = Recorder(
            httpx.Response(
                422,
                json={
                    "success": False,
                    "message": "The given data was invalid.",
                    "errors": {"end_date": ["End date must be after start date."]},
                },
            )
        )

        with pytest.raises(ValidationError) as excinfo:
            make_client(recorder).update_draft(7, {"end_date": "2026-02-14"})

        assert excinfo.value.field == "end_date"
        assert excinfo.value.errors["end_date"] == ["End date must be after start date."]

    def test_success_false_in_200_is_an_error(self, make_client) -> None:
        recorder = Recorder(
            httpx.Response(200, json={"success": False, "code": "not_editable", "message": "No"})
        )

        with pytest.raises(WorkflowError):
            make_client(recorder).delete_draft(7)

    def test_expired_token_clears_session(self, make_client, session, expired) -> None:
        recorder = Recorder(httpx.Response(401, json={"message": "Token has expired"}))

        with pytest.raises(AuthenticationExpired):
            make_client(recorder).my_orders()

        assert not session.is_authenticated
        assert expired == ["login"]

    def test_other_401_keeps_session(self, make_client, session) -> None:
        recorder = Recorder(httpx.Response(401, json={"message": "Wrong role"}))

        with pytest.raises(ApiError) as excinfo:
            make_client(recorder).my_orders()

        assert not isinstance(excinfo.value, AuthenticationExpired)
        assert excinfo.value.http_status == 401
        assert session.is_authenticated

    def test_network_error_keeps_session(self, make_client, session) -> None:
        recorder = Recorder(httpx.ConnectError("connection refused"))

        with pytest.raises(NetworkError):
            make_client(recorder).my_orders()

        assert session.is_authenticated


class TestConfiguration:
    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch) -> None:
        for name in ("PORTAL_CONFIG", "PORTAL_API_BASE_URL", "PORTAL_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

    def test_client_loads_config_when_none_is_given(self, monkeypatch, session) -> None:
        monkeypatch.setenv("PORTAL_API_BASE_URL", "https://portal.example.gov/api")
        recorder = Recorder(ok(ORDER_PAYLOAD))

        client = PortalClient(session, transport=httpx.MockTransport(recorder))
        client.get_order(7)

        assert recorder.last.url.host == "portal.example.gov"
        assert recorder.last.url.path == "/api/personnel/travel-orders/7"

    def test_lists_default_to_the_configured_page_size(self, monkeypatch, session) -> None:
        monkeypatch.setenv("PORTAL_CONFIG", "portal:\n  default_page_size: 25\n")
        recorder = Recorder(ok({"items": [], "pagination": {"total": 0}}))

        client = PortalClient(session, transport=httpx.MockTransport(recorder))
        page = client.my_orders()

        assert recorder.last.url.params["per_page"] == "25"
        assert page.page_size == 25
