"""HTTP client for the travel order portal API.

The client never decides a status transition itself: every mutating call
returns the order exactly as the server reports it. Server errors are mapped
onto the same error classes the service raises, so controllers can handle a
stale ``NotCurrentStep`` the same way whether it came over the wire or not.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field

from .attachments import UploadFile
from .config import PortalConfig
from .errors import (
    ApiError,
    AttachmentError,
    AuthenticationExpired,
    FileTooLarge,
    NetworkError,
    NotAuthorized,
    OrderNotFound,
    PortalError,
    ValidationError,
    WorkflowError,
    error_class_for_code,
)
from .listing import ListQuery, Page
from .logging import get_logger
from .models import (
    Actor,
    AttachmentType,
    Decision,
    DirectorSignature,
    OrderDetail,
    PersonRef,
    RoleName,
    TravelOrder,
)
from .session import Session
from .workflow import RoutingDecision

logger = get_logger(__name__)

# A 401 carrying one of these means the token itself is no longer usable.
SESSION_EXPIRED_MARKERS: tuple[str, ...] = ("Unauthenticated", "Invalid", "expired")

_ERRORS_BY_STATUS: dict[int, type[PortalError]] = {
    403: NotAuthorized,
    404: OrderNotFound,
    409: WorkflowError,
    413: FileTooLarge,
}

_FILENAME_PATTERN = re.compile(r'filename\*?=(?:UTF-8\'\')?"?([^";]+)"?', re.IGNORECASE)

ExportFormat = Literal["pdf", "excel"]


class DownloadedFile(BaseModel):
    """Binary content returned by a download or export endpoint."""

    file_name: str = Field(..., description="Name suggested by the server")
    content: bytes = Field(..., description="File content")
    content_type: str | None = Field(default=None, description="Response MIME type")


def _form_value(value: object) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def _form_fields(fields: Mapping[str, object], *, keep_blank: bool = False) -> dict[str, str]:
    """Form-encode field values; ``keep_blank`` sends cleared fields as empty strings."""

    return {
        name: "" if value is None else _form_value(value)
        for name, value in fields.items()
        if value is not None or keep_blank
    }


def _file_parts(
    name: str, uploads: Iterable[UploadFile]
) -> list[tuple[str, tuple[str, bytes, str]]]:
    return [
        (name, (upload.file_name, upload.content, upload.guessed_content_type()))
        for upload in uploads
    ]


def _order_from(data: Any) -> TravelOrder:
    if isinstance(data, Mapping) and "travel_order" in data:
        data = data["travel_order"]
    return TravelOrder.model_validate(data)


def _member_from(data: Any, role: RoleName) -> Actor:
    if isinstance(data, Mapping) and "user" in data:
        data = data["user"]
    return Actor.model_validate({**data, "role": role})


class PortalClient:
    """Typed wrapper over the role-prefixed REST API."""

    def __init__(
        self,
        session: Session,
        *,
        config: PortalConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.session = session
        self.config = config or PortalConfig.load()
        self._http = httpx.Client(
            base_url=self.config.api_base_url,
            timeout=self.config.timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> PortalClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Transport

    def _prefix(self, role: RoleName | None) -> str:
        resolved = role or (self.session.user.role if self.session.user else None)
        if resolved is None:
            raise ValueError("A role is required when no user is signed in")
        return resolved.route_prefix

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        data: Mapping[str, Any] | None = None,
        files: Sequence[tuple[str, tuple[str, bytes, str]]] | None = None,
    ) -> httpx.Response:
        headers = {}
        token = self.session.bearer_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self._http.request(
                method,
                path,
                params=params,
                json=json,
                data=data,
                files=files or None,
                headers=headers,
            )
        except httpx.TransportError as exc:
            logger.warning("request_failed", method=method, path=path, error=str(exc))
            raise NetworkError(
                "Network error. Check your connection and try again."
            ) from exc
        if response.is_error:
            raise self._error_from(response)
        return response

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._send(method, path, **kwargs)
        if not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(
                "The server returned an unreadable response.",
                status_code=response.status_code,
            ) from exc
        if isinstance(payload, Mapping) and payload.get("success") is False:
            raise self._error_from(response, payload)
        if isinstance(payload, Mapping) and "data" in payload:
            return payload["data"]
        return payload

    def _error_from(
        self, response: httpx.Response, payload: Mapping[str, Any] | None = None
    ) -> PortalError:
        if payload is None:
            try:
                decoded = response.json()
            except ValueError:
                decoded = None
            payload = decoded if isinstance(decoded, Mapping) else {}

        status = response.status_code
        message = str(payload.get("message") or response.reason_phrase or "Request failed.")
        errors = payload.get("errors") or {}
        code = payload.get("code")
        logger.warning(
            "request_error",
            method=response.request.method,
            path=response.request.url.path,
            status=status,
            code=code,
        )

        if status == 401 and any(marker in message for marker in SESSION_EXPIRED_MARKERS):
            self.session.clear()
            return AuthenticationExpired(message, status_code=status)

        if code == ValidationError.code or (code is None and status == 422):
            field = next(iter(errors), "__root__")
            return ValidationError(field, message, errors or None)

        error_cls = error_class_for_code(code) or _ERRORS_BY_STATUS.get(status)
        if error_cls is None:
            return ApiError(message, status_code=status, errors=errors)
        if issubclass(error_cls, AttachmentError):
            return error_cls(str(payload.get("file_name") or ""), message)
        return error_cls(message)

    def _fetch_page(
        self, path: str, query: ListQuery, item_model: type[BaseModel], defaults: dict[str, Any]
    ) -> Page[Any]:
        data = self._request("GET", path, params=query.to_params()) or {}
        items = [item_model.model_validate({**defaults, **item}) for item in data.get("items", [])]
        return Page.from_api(items, data.get("pagination"), query)

    def _page_of(
        self,
        path: str,
        query: ListQuery | None,
        item_model: type[BaseModel],
        **defaults: Any,
    ) -> Page[Any]:
        """Fetch one list page; a page past the end is fetched again as the last page."""

        query = query or self.config.list_query()
        page = self._fetch_page(path, query, item_model, defaults)
        if not page.items and page.total and query.page > page.last_page:
            logger.info(
                "page_clamped", path=path, requested=query.page, last_page=page.last_page
            )
            page = self._fetch_page(path, query.with_page(page.last_page), item_model, defaults)
        return page

    # Personnel

    def my_orders(self, query: ListQuery | None = None) -> Page[TravelOrder]:
        return self._page_of("/personnel/travel-orders", query, TravelOrder)

    def create_draft(
        self,
        fields: Mapping[str, object],
        uploads: Sequence[tuple[UploadFile, AttachmentType | None]] = (),
    ) -> TravelOrder:
        """Create a draft with its first attachments in one multipart request."""

        data: dict[str, Any] = _form_fields(fields)
        if uploads:
            data["attachment_types[]"] = [
                (kind or AttachmentType.OTHER).value for _, kind in uploads
            ]
        files = _file_parts("attachments[]", (upload for upload, _ in uploads))
        return _order_from(
            self._request("POST", "/personnel/travel-orders", data=data, files=files)
        )

    def update_draft(
        self,
        order_id: int,
        fields: Mapping[str, object],
        uploads: Sequence[tuple[UploadFile, AttachmentType | None]] = (),
        delete_attachment_ids: Sequence[int] = (),
    ) -> TravelOrder:
        """Save a draft's fields, new files and removals as one PUT."""

        data: dict[str, Any] = {"_method": "PUT", **_form_fields(fields, keep_blank=True)}
        if uploads:
            data["attachment_types[]"] = [
                (kind or AttachmentType.OTHER).value for _, kind in uploads
            ]
        if delete_attachment_ids:
            data["delete_attachment_ids[]"] = [str(i) for i in delete_attachment_ids]
        files = _file_parts("attachments[]", (upload for upload, _ in uploads))
        return _order_from(
            self._request(
                "POST", f"/personnel/travel-orders/{order_id}", data=data, files=files
            )
        )

    def delete_draft(self, order_id: int) -> None:
        self._request("DELETE", f"/personnel/travel-orders/{order_id}")

    def routing_directors(self) -> list[PersonRef]:
        """Directors the requester may route a submission to."""

        data = self._request("GET", "/personnel/directors") or []
        if isinstance(data, Mapping):
            data = data.get("items", [])
        return [PersonRef.model_validate(item) for item in data]

    def submit(self, order_id: int, routing: RoutingDecision) -> TravelOrder:
        return _order_from(
            self._request(
                "POST",
                f"/personnel/travel-orders/{order_id}/submit",
                json=routing.model_dump(exclude_none=True),
            )
        )

    # Directors

    def pending_orders(self, query: ListQuery | None = None) -> Page[TravelOrder]:
        return self._page_of("/directors/travel-orders/pending", query, TravelOrder)

    def history(self, query: ListQuery | None = None) -> Page[TravelOrder]:
        """Orders already decided by the director; ``query.status`` picks the tab."""

        return self._page_of("/directors/travel-orders/history", query, TravelOrder)

    def order_detail(self, order_id: int) -> OrderDetail:
        data = self._request("GET", f"/directors/travel-orders/{order_id}")
        if isinstance(data, Mapping) and "travel_order" in data:
            return OrderDetail.model_validate(data)
        order = TravelOrder.model_validate(data)
        return OrderDetail(travel_order=order, current_approval=order.current_step)

    def act(
        self, order_id: int, decision: Decision, remarks: str | None = None
    ) -> TravelOrder:
        return _order_from(
            self._request(
                "POST",
                f"/directors/travel-orders/{order_id}/action",
                json={"action": decision.value, "remarks": (remarks or "").strip() or None},
            )
        )

    def signature(self) -> DirectorSignature | None:
        data = self._request("GET", "/directors/profile/signature")
        if not data:
            return None
        if isinstance(data, Mapping) and "signature" in data:
            data = data["signature"]
        return DirectorSignature.model_validate(data) if data else None

    def upload_signature(self, upload: UploadFile) -> DirectorSignature | None:
        """Replace the signature image; the size and type are checked first."""

        self.config.signature_policy().check(upload)
        self._request(
            "POST",
            "/directors/profile/signature",
            files=_file_parts("signature", [upload]),
        )
        return self.signature()

    def remove_signature(self) -> None:
        self._request(
            "POST", "/directors/profile/signature", data={"remove_signature": "1"}
        )

    # Administrator

    def all_orders(self, query: ListQuery | None = None) -> Page[TravelOrder]:
        return self._page_of("/ict-admin/travel-orders", query, TravelOrder)

    @staticmethod
    def _roster_path(role: RoleName) -> str:
        if role not in (RoleName.DIRECTOR, RoleName.PERSONNEL):
            raise ValueError(f"No roster is kept for the {role.value} role")
        return "/ict-admin/directors" if role == RoleName.DIRECTOR else "/ict-admin/personnel"

    def roster(self, role: RoleName, query: ListQuery | None = None) -> Page[Actor]:
        return self._page_of(self._roster_path(role), query, Actor, role=role)

    def directors_roster(self, query: ListQuery | None = None) -> Page[Actor]:
        return self.roster(RoleName.DIRECTOR, query)

    def personnel_roster(self, query: ListQuery | None = None) -> Page[Actor]:
        return self.roster(RoleName.PERSONNEL, query)

    def create_member(self, role: RoleName, fields: Mapping[str, object]) -> Actor:
        data = _form_fields(fields)
        return _member_from(self._request("POST", self._roster_path(role), data=data), role)

    def update_member(
        self, role: RoleName, member_id: int, fields: Mapping[str, object]
    ) -> Actor:
        """Send changed account fields; booleans go over the form as 1 or 0."""

        data = {"_method": "PUT", **_form_fields(fields, keep_blank=True)}
        return _member_from(
            self._request("POST", f"{self._roster_path(role)}/{member_id}", data=data), role
        )

    def deactivate_member(self, role: RoleName, member_id: int, reason: str) -> Actor:
        return self.update_member(
            role, member_id, {"is_active": False, "reason_for_deactivation": reason}
        )

    # Any role

    def get_order(self, order_id: int, role: RoleName | None = None) -> TravelOrder:
        prefix = self._prefix(role)
        return _order_from(self._request("GET", f"/{prefix}/travel-orders/{order_id}"))

    def _download(self, path: str, fallback_name: str, **params: Any) -> DownloadedFile:
        response = self._send("GET", path, params=params or None)
        disposition = response.headers.get("content-disposition", "")
        match = _FILENAME_PATTERN.search(disposition)
        return DownloadedFile(
            file_name=match.group(1) if match else fallback_name,
            content=response.content,
            content_type=response.headers.get("content-type"),
        )

    def download_attachment(
        self, attachment_id: int, role: RoleName | None = None
    ) -> DownloadedFile:
        prefix = self._prefix(role)
        return self._download(
            f"/{prefix}/travel-order-attachments/{attachment_id}/download",
            f"attachment-{attachment_id}",
        )

    def export_order(
        self,
        order_id: int,
        fmt: ExportFormat = "pdf",
        *,
        include_ctt: bool = False,
        role: RoleName | None = None,
    ) -> DownloadedFile:
        prefix = self._prefix(role)
        if fmt == "excel":
            return self._download(
                f"/{prefix}/travel-orders/{order_id}/export/excel",
                f"TRAVEL_ORDER_{order_id}.xlsx",
            )
        suffix = "_CTT" if include_ctt else ""
        params = {"include_ctt": 1} if include_ctt else {}
        return self._download(
            f"/{prefix}/travel-orders/{order_id}/export/pdf",
            f"TRAVEL_ORDER_{order_id}{suffix}.pdf",
            **params,
        )
