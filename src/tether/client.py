"""Async HTTP client for the agent service API."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx
import structlog

from tether.errors import RemoteAPIError, SessionCreateError
from tether.models.records import SessionInfo

_logger = structlog.get_logger("tether.client")


def _decode_event(data_lines: list[str]) -> dict[str, Any] | None:
    raw = "\n".join(data_lines)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        _logger.debug("event_decode_failed", data=raw[:200])
        return None
    return payload if isinstance(payload, dict) else None


class EventSubscription:
    """
    A live ``GET /event`` server-sent-events stream.

    Iterating yields one decoded JSON object per event. ``aclose()`` closes the
    upstream response and is safe to call more than once, including while
    another task is still iterating.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._events()

    async def _events(self) -> AsyncIterator[dict[str, Any]]:
        data_lines: list[str] = []
        async for line in self._response.aiter_lines():
            if line.startswith("data:"):
                data_lines.append(line[5:].lstrip(" "))
                continue
            if line.strip() or not data_lines:
                # ``event:``/``id:``/comment lines carry nothing we use.
                continue
            payload = _decode_event(data_lines)
            data_lines = []
            if payload is not None:
                yield payload
        # Stream ended without the closing blank line.
        if data_lines:
            payload = _decode_event(data_lines)
            if payload is not None:
                yield payload

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class OpencodeClient:
    """
    Thin async wrapper over the agent service's HTTP API.

    Every method returns decoded JSON (or a validated model where the caller
    cannot proceed without one). Non-2xx answers raise :class:`RemoteAPIError`;
    transport failures propagate as ``httpx.TransportError``.

    Example::

        async with OpencodeClient("http://127.0.0.1:4096") as client:
            session = await client.create_session()
            await client.prompt_async(session.id, {"parts": [{"type": "text", "text": "hi"}]})
    """

    def __init__(
        self,
        base_url: str,
        *,
        directory: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.directory = directory
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, read=None),
            transport=transport,
        )

    async def __aenter__(self) -> OpencodeClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Internals ──────────────────────────────────────────────────────────────

    def _params(self, directory: str | None = None, **extra: Any) -> dict[str, Any]:
        params: dict[str, Any] = {}
        target = directory if directory is not None else self.directory
        if target is not None:
            params["directory"] = target
        for key, value in extra.items():
            if value is None:
                continue
            params[key] = str(value).lower() if isinstance(value, bool) else value
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        response = await self._http.request(method, path, params=params, json=json_body)
        if not response.is_success:
            raise RemoteAPIError(method, path, response.status_code, response.text[:500])
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ── Projects / sessions ────────────────────────────────────────────────────

    async def list_projects(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/project")
        return data if isinstance(data, list) else []

    async def list_sessions(
        self,
        directory: str | None = None,
        *,
        start: int | None = None,
        roots: bool | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params = self._params(directory, start=start, roots=roots, limit=limit)
        data = await self._request("GET", "/session", params=params)
        return data if isinstance(data, list) else []

    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        """Return the raw session record, or None if the service has no such session."""
        try:
            data = await self._request("GET", f"/session/{session_id}", params=self._params())
        except RemoteAPIError as exc:
            if exc.status_code == 404:
                return None
            raise
        return data if isinstance(data, dict) else None

    async def create_session(self, title: str | None = None) -> SessionInfo:
        """
        Create a new root session.

        Raises:
            SessionCreateError: If the service answers without a usable session.
        """
        body = {} if title is None else {"title": title}
        data = await self._request("POST", "/session", params=self._params(), json_body=body)
        if not isinstance(data, dict) or not data.get("id"):
            raise SessionCreateError(f"Failed to create session: no data returned ({data!r})")
        return SessionInfo.model_validate(data)

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/session/{session_id}", params=self._params())

    async def session_messages(self, session_id: str) -> list[dict[str, Any]]:
        """``[{"info": {...}, "parts": [...]}, ...]`` in service order (not guaranteed sorted)."""
        data = await self._request("GET", f"/session/{session_id}/message", params=self._params())
        return data if isinstance(data, list) else []

    async def session_todos(self, session_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/session/{session_id}/todo", params=self._params())
        return data if isinstance(data, list) else []

    # ── Turns ──────────────────────────────────────────────────────────────────

    async def prompt_async(
        self, session_id: str, body: Mapping[str, Any], directory: str | None = None
    ) -> None:
        """Submit a prompt and return immediately; progress arrives on the event stream."""
        await self._request(
            "POST",
            f"/session/{session_id}/prompt_async",
            params=self._params(directory),
            json_body=dict(body),
        )

    async def prompt(self, session_id: str, body: Mapping[str, Any]) -> Any:
        """Submit a prompt and wait for the service's answer (used with ``noReply``)."""
        return await self._request(
            "POST",
            f"/session/{session_id}/message",
            params=self._params(),
            json_body=dict(body),
        )

    async def session_status(self, directory: str | None = None) -> dict[str, Any]:
        """Map of session id to ``{"type": "idle" | "busy" | "retry", ...}``."""
        data = await self._request("GET", "/session/status", params=self._params(directory))
        return data if isinstance(data, dict) else {}

    async def subscribe_events(self) -> EventSubscription:
        """
        Open the server-sent-events stream.

        The subscription is live once this returns. Callers own it and must
        ``aclose()`` it.
        """
        request = self._http.build_request("GET", "/event", params=self._params())
        response = await self._http.send(request, stream=True)
        if not response.is_success:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise RemoteAPIError("GET", "/event", response.status_code, body[:500])
        return EventSubscription(response)
