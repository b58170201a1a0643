"""
Thin client for the chat backend's REST resources.

Used by the mixed-traffic scenario to put read and write pressure on
the HTTP API alongside WebSocket traffic.  Every response is wrapped in
an :class:`ApiResponse` that understands the backend's
``{"status": ..., "data" | "message": ...}`` envelope.

Pass Locust's ``self.client`` as *http* with ``label_requests=True`` to
get one stats row per endpoint template instead of one per URL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from chatload.models import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    body: dict[str, Any] | None

    @property
    def ok(self) -> bool:
        return (
            200 <= self.status_code < 300
            and self.body is not None
            and self.body.get("status") == "success"
        )

    @property
    def data(self) -> Any:
        return self.body.get("data") if self.body else None

    @property
    def message(self) -> str:
        if not self.body:
            return ""
        text = self.body.get("message")
        return text if isinstance(text, str) else ""

    @classmethod
    def from_response(cls, response: Any) -> "ApiResponse":
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = None
        return cls(status_code=response.status_code or 0, body=body)


class ChatApiClient:
    """
    REST calls made on behalf of one authenticated session.

    Non-GET requests carry ``X-CSRF-TOKEN`` from the session.  Network
    errors are not caught here; Locust's ``HttpSession`` reports them as
    status 0 and a plain ``requests.Session`` raises them to the caller.
    """

    def __init__(
        self,
        http: requests.Session,
        session: Session,
        *,
        base_url: str | None = None,
        timeout: float = 10.0,
        label_requests: bool = False,
    ):
        self.http = http
        self.session = session
        self.base_url = (base_url or session.base_url).rstrip("/")
        self.timeout = timeout
        self.label_requests = label_requests

    def _request(self, method: str, path: str, name: str, **kwargs: Any) -> ApiResponse:
        headers = self.session.headers if method == "GET" else self.session.csrf_headers()
        if self.label_requests:
            kwargs["name"] = name
        response = self.http.request(
            method,
            f"{self.base_url}{path}",
            headers=headers,
            timeout=self.timeout,
            **kwargs,
        )
        result = ApiResponse.from_response(response)
        if not result.ok:
            logger.debug("%s %s -> %s %s", method, name, result.status_code, result.message)
        return result

    def health(self) -> ApiResponse:
        return self._request("GET", "/health", "/health")

    def list_servers(self) -> ApiResponse:
        return self._request("GET", "/servers", "/servers")

    def search_servers(self, query: str = "test", page: int = 1, limit: int = 10) -> ApiResponse:
        return self._request(
            "GET",
            "/servers/search",
            "/servers/search",
            params={"query": query, "page": page, "limit": limit},
        )

    def create_server(self, name: str, description: str = "", is_public: bool = False) -> ApiResponse:
        # The endpoint only accepts multipart form data.
        form = {
            "name": (None, name),
            "description": (None, description),
            "is_public": (None, "true" if is_public else "false"),
        }
        return self._request("POST", "/servers", "/servers [POST]", files=form)

    def get_server(self, server_id: str) -> ApiResponse:
        return self._request("GET", f"/servers/{server_id}", "/servers/[id]")

    def list_channels(self, server_id: str) -> ApiResponse:
        return self._request("GET", f"/servers/{server_id}/channels", "/servers/[id]/channels")

    def create_channel(self, server_id: str, name: str, channel_type: str = "text") -> ApiResponse:
        return self._request(
            "POST",
            f"/servers/{server_id}/channels",
            "/servers/[id]/channels [POST]",
            json={"name": name, "type": channel_type},
        )

    def list_friends(self) -> ApiResponse:
        return self._request("GET", "/friends", "/friends")

    def pending_friends(self) -> ApiResponse:
        return self._request("GET", "/friends/pending", "/friends/pending")

    def blocked_friends(self) -> ApiResponse:
        return self._request("GET", "/friends/blocked", "/friends/blocked")

    def list_dm_rooms(self) -> ApiResponse:
        return self._request("GET", "/dm_rooms", "/dm_rooms")

    def dm_messages(self, room_id: str, limit: int = 10) -> ApiResponse:
        return self._request(
            "GET",
            f"/dm_rooms/{room_id}/messages",
            "/dm_rooms/[id]/messages",
            params={"limit": limit},
        )

    def upload_file(
        self,
        filename: str = "test-document.txt",
        content: bytes = b"\0" * 1024,
        content_type: str = "text/plain",
    ) -> ApiResponse:
        return self._request(
            "POST",
            "/upload/file",
            "/upload/file [POST]",
            files={"file": (filename, content, content_type)},
        )
