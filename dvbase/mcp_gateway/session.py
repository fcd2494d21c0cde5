"""Protocol session management for the DVBase MCP gateway.

Each client session owns one streamable HTTP transport and one tool registry.
Sessions start with an ``initialize`` POST that carries no known session id and
end when the client sends DELETE or the transport closes on its own.
"""

from __future__ import annotations

import contextlib
import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

from dvbase.mcp_gateway.constants import (
    ERROR_INTERNAL,
    ERROR_NO_VALID_SESSION,
    INVALID_SESSION_MESSAGE,
    MCP_SESSION_ID_HEADER,
    NO_VALID_SESSION_MESSAGE,
)
from dvbase.mcp_gateway.registry import RegistryFactory, ToolRegistry

logger = logging.getLogger("dvbase.mcp_gateway.session")

_SESSION_HEADER_BYTES = MCP_SESSION_ID_HEADER.encode("latin-1")


@dataclass
class Session:
    """An active client session."""

    session_id: str
    transport: StreamableHTTPServerTransport
    registry: ToolRegistry
    client_address: str = ""
    created_at: float = field(default_factory=time.time)


def is_initialize_request(payload: Any) -> bool:
    """True for an ``initialize`` message, or a batch containing one.

    Batches are recognised here, but the streamable HTTP transport rejects
    batched requests with -32602, so a batched ``initialize`` never yields a
    session.
    """
    if isinstance(payload, dict):
        return payload.get("method") == "initialize"
    if isinstance(payload, list):
        return any(
            isinstance(item, dict) and item.get("method") == "initialize" for item in payload
        )
    return False


def _request_id(payload: Any) -> Any:
    if isinstance(payload, dict):
        return payload.get("id")
    return None


def _parse_body(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


def _session_header(scope: Scope) -> str | None:
    for key, value in scope.get("headers", []):
        if key.lower() == _SESSION_HEADER_BYTES:
            return value.decode("latin-1")
    return None


def _without_session_header(scope: Scope) -> Scope:
    headers = [
        (key, value)
        for key, value in scope.get("headers", [])
        if key.lower() != _SESSION_HEADER_BYTES
    ]
    return {**scope, "headers": headers}


def _replay_receive(body: bytes, receive: Receive) -> Receive:
    """Hand an already-read request body to the next consumer, then defer to ``receive``."""
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class _ResponseTracker:
    """Wraps ASGI ``send`` and remembers the response status once sent."""

    def __init__(self, send: Send) -> None:
        self._send = send
        self.status: int | None = None

    @property
    def started(self) -> bool:
        return self.status is not None

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status = int(message["status"])
        await self._send(message)


class SessionManager:
    """Maps session ids to live transports and routes requests to them.

    The manager must be running (``async with manager.run():``) before it can
    serve requests; the task group created there hosts one server task per
    session.
    """

    def __init__(self, registry_factory: RegistryFactory, json_response: bool = False) -> None:
        """Initialize session manager.

        Args:
            registry_factory: Builds a fresh tool registry for a new session id
            json_response: Answer POSTs with plain JSON instead of SSE streams
        """
        self._registry_factory = registry_factory
        self.json_response = json_response
        self._sessions: dict[str, Session] = {}
        self._session_creation_lock = anyio.Lock()
        self._task_group: TaskGroup | None = None
        self._has_started = False

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """Host session tasks for the lifetime of the application."""
        if self._has_started:
            raise RuntimeError("SessionManager.run() can only be entered once per instance")
        self._has_started = True

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("session_manager_started")
            try:
                yield
            finally:
                logger.info(
                    "session_manager_stopping active_sessions=%d",
                    len(self._sessions),
                    extra={"active_sessions": len(self._sessions)},
                )
                with anyio.CancelScope(shield=True):
                    for session in list(self._sessions.values()):
                        await session.transport.terminate()
                self._sessions.clear()
                tg.cancel_scope.cancel()
                self._task_group = None

    async def handle_request(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        client_address: str = "",
    ) -> None:
        """Route one authorized ASGI request. Never raises."""
        tracker = _ResponseTracker(send)
        try:
            await self._route(scope, receive, tracker, client_address)
        except Exception:
            logger.exception(
                "request_failed method=%s ip=%s",
                scope.get("method", ""),
                client_address or "(unknown)",
                extra={"client_address": client_address},
            )
            if not tracker.started:
                response = JSONResponse(
                    {
                        "jsonrpc": "2.0",
                        "error": {"code": ERROR_INTERNAL, "message": "Internal server error"},
                        "id": None,
                    },
                    status_code=500,
                )
                await response(scope, receive, tracker)

    async def _route(
        self,
        scope: Scope,
        receive: Receive,
        send: _ResponseTracker,
        client_address: str,
    ) -> None:
        task_group = self._task_group
        if task_group is None:
            raise RuntimeError("SessionManager is not running. Enter run() first.")

        method = scope.get("method", "")
        session_id = _session_header(scope)
        session = self._sessions.get(session_id) if session_id else None

        if method == "DELETE":
            await self._handle_delete(session, scope, receive, send)
            return

        if session is not None:
            await session.transport.handle_request(scope, receive, send)
            return

        if method != "POST":
            await self._reject_no_session(None, scope, receive, send)
            return

        body = await Request(scope, receive).body()
        payload = _parse_body(body)
        if not is_initialize_request(payload):
            await self._reject_no_session(_request_id(payload), scope, receive, send)
            return

        await self._start_session(
            task_group,
            _without_session_header(scope),
            _replay_receive(body, receive),
            send,
            client_address,
        )

    async def _start_session(
        self,
        task_group: TaskGroup,
        scope: Scope,
        receive: Receive,
        send: _ResponseTracker,
        client_address: str,
    ) -> None:
        async with self._session_creation_lock:
            session_id = uuid4().hex
            transport = StreamableHTTPServerTransport(
                mcp_session_id=session_id,
                is_json_response_enabled=self.json_response,
                event_store=None,
                security_settings=None,
            )
            session = Session(
                session_id=session_id,
                transport=transport,
                registry=self._registry_factory(session_id),
                client_address=client_address,
            )
            await task_group.start(self._run_session, session)
            self._sessions[session_id] = session

        logger.info(
            "session_created session_id=%s ip=%s active_sessions=%d",
            session_id,
            client_address or "(unknown)",
            len(self._sessions),
            extra={"session_id": session_id, "client_address": client_address},
        )

        try:
            await transport.handle_request(scope, receive, send)
        except Exception:
            await transport.terminate()
            self._discard(session, "initialize_failed")
            raise

        if send.status is not None and send.status >= 400:
            logger.warning(
                "session_initialize_rejected session_id=%s status=%d",
                session_id,
                send.status,
                extra={"session_id": session_id, "status": send.status},
            )
            await transport.terminate()
            self._discard(session, "initialize_failed")

    async def _run_session(
        self,
        session: Session,
        *,
        task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        server = session.registry.server
        async with session.transport.connect() as (read_stream, write_stream):
            task_status.started()
            try:
                await server.run(
                    read_stream,
                    write_stream,
                    server.create_initialization_options(),
                    stateless=False,
                )
            except Exception:
                logger.exception(
                    "session_crashed session_id=%s",
                    session.session_id,
                    extra={"session_id": session.session_id},
                )
            finally:
                self._discard(session, "closed")

    async def _handle_delete(
        self,
        session: Session | None,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        if session is None:
            response = JSONResponse({"error": INVALID_SESSION_MESSAGE}, status_code=400)
            await response(scope, receive, send)
            return

        await session.transport.handle_request(scope, receive, send)
        if session.transport.is_terminated:
            self._discard(session, "deleted")
        else:
            logger.warning(
                "session_delete_rejected session_id=%s",
                session.session_id,
                extra={"session_id": session.session_id},
            )

    async def _reject_no_session(
        self, request_id: Any, scope: Scope, receive: Receive, send: Send
    ) -> None:
        logger.info(
            "session_rejected method=%s",
            scope.get("method", ""),
            extra={"request_id": request_id},
        )
        response = JSONResponse(
            {
                "jsonrpc": "2.0",
                "error": {"code": ERROR_NO_VALID_SESSION, "message": NO_VALID_SESSION_MESSAGE},
                "id": request_id,
            },
            status_code=400,
        )
        await response(scope, receive, send)

    def _discard(self, session: Session, reason: str) -> None:
        """Remove ``session`` if it is still the registered entry for its id."""
        if self._sessions.get(session.session_id) is not session:
            return
        del self._sessions[session.session_id]
        logger.info(
            "session_%s session_id=%s active_sessions=%d",
            reason,
            session.session_id,
            len(self._sessions),
            extra={"session_id": session.session_id, "reason": reason},
        )
