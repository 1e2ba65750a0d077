"""
Tool Invocation Layer — uniform contract for calling named tools on named
MCP servers, scoped per user.

  - ToolInvoker          → the contract the orchestrator depends on
  - MCPClientManager     → streamable-HTTP MCP client (httpx), sessions keyed
                           by (user_scope, server), per-user connection cap
  - normalize_tool_result() → MCP tools/call result → validated ToolPayload

Design notes:
  - Credentials are validated before any network attempt.
  - A second connect for the same (user, server) while one is in flight
    awaits the first instead of opening a duplicate session.
  - Every transport / protocol failure surfaces as ToolInvocationError.
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from compliance_swarm.config import ConfigurationError, Settings
from compliance_swarm.mcp.servers import MCPServerDefinition, build_auth_headers, get_server
from compliance_swarm.models.schemas import JsonPayload, TextPayload, ToolDescriptor, ToolPayload

logger = logging.getLogger(__name__)

_CLIENT_INFO = {"name": "compliance-swarm", "version": "0.1.0"}


class ToolInvocationError(RuntimeError):
    """A tool server could not be reached or the tool reported an error."""


class ConnectionLimitError(ToolInvocationError):
    """The user already holds the maximum number of open connections."""


# ── Contract ─────────────────────────────────────────────


class ToolInvoker(ABC):
    @abstractmethod
    async def connect(
        self,
        server: str,
        credentials: dict[str, str],
        user_scope: str,
        url: Optional[str] = None,
    ) -> None: ...

    @abstractmethod
    async def list_tools(self, server: str, user_scope: str) -> list[ToolDescriptor]: ...

    @abstractmethod
    async def call_tool(
        self, server: str, tool: str, arguments: dict[str, Any], user_scope: str
    ) -> ToolPayload: ...

    @abstractmethod
    async def disconnect(self, server: str, user_scope: str) -> None: ...

    @abstractmethod
    async def disconnect_all(self, user_scope: Optional[str] = None) -> None: ...


# ── Result normalization ─────────────────────────────────


def _text_content(content: list[Any]) -> str:
    return "\n".join(
        str(item.get("text", ""))
        for item in content
        if isinstance(item, dict) and item.get("type") == "text"
    )


def normalize_tool_result(result: Any) -> ToolPayload:
    """Map an MCP tools/call result onto JsonPayload or TextPayload."""
    if not isinstance(result, dict):
        raise ToolInvocationError(f"Malformed tool result: expected object, got {type(result).__name__}")

    content = result.get("content") or []
    if result.get("isError"):
        raise ToolInvocationError(_text_content(content) or "Tool reported an error")

    structured = result.get("structuredContent")
    if isinstance(structured, (dict, list)):
        return JsonPayload(data=structured)

    text = _text_content(content)
    if not text:
        other = [item for item in content if isinstance(item, dict) and item.get("type") != "text"]
        return JsonPayload(data={"content": other}) if other else TextPayload(text="")

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return TextPayload(text=text)
    if isinstance(data, (dict, list)):
        return JsonPayload(data=data)
    return TextPayload(text=text)


def connection_fingerprint(url: str, headers: dict[str, str]) -> str:
    """Digest of endpoint plus auth headers; a change means the session is stale."""
    material = json.dumps([url, sorted(headers.items())])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


# ── Session (one per user + server) ──────────────────────


class MCPSession:
    """JSON-RPC over MCP streamable HTTP for a single endpoint."""

    def __init__(
        self,
        server: MCPServerDefinition,
        url: str,
        headers: dict[str, str],
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.server = server
        self.url = url
        self.settings = settings
        self.session_id: Optional[str] = None
        self.fingerprint = connection_fingerprint(url, headers)
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(headers=headers, transport=transport)

    async def initialize(self) -> dict[str, Any]:
        result = await self._rpc(
            "initialize",
            {
                "protocolVersion": self.settings.mcp_protocol_version,
                "capabilities": {},
                "clientInfo": _CLIENT_INFO,
            },
        )
        await self._notify("notifications/initialized")
        logger.info(
            f"[MCP] Connected to {self.server.name} "
            f"({result.get('serverInfo', {}).get('name', 'unknown server')})"
        )
        return result

    async def list_tools(self) -> list[ToolDescriptor]:
        tools: list[ToolDescriptor] = []
        cursor: Optional[str] = None
        while True:
            result = await self._rpc("tools/list", {"cursor": cursor} if cursor else {})
            for tool in result.get("tools", []):
                tools.append(
                    ToolDescriptor(
                        name=tool["name"],
                        description=tool.get("description", ""),
                        input_schema=tool.get("inputSchema", {}),
                    )
                )
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolPayload:
        result = await self._rpc("tools/call", {"name": name, "arguments": arguments})
        return normalize_tool_result(result)

    async def close(self) -> None:
        await self._client.aclose()

    # ── Transport ────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json, text/event-stream"}
        if self.session_id:
            headers["Mcp-Session-Id"] = self.session_id
        return headers

    async def _rpc(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        request_id = next(self._ids)
        response = await self._client.post(
            self.url,
            json={"jsonrpc": "2.0", "id": request_id, "method": method, "params": params},
            headers=self._headers(),
        )
        response.raise_for_status()
        if response.headers.get("mcp-session-id"):
            self.session_id = response.headers["mcp-session-id"]

        message = _decode_message(response, request_id)
        if "error" in message:
            error = message["error"] or {}
            raise ToolInvocationError(
                f"{self.server.name} {method} failed: {error.get('message', 'unknown error')}"
            )
        return message.get("result") or {}

    async def _notify(self, method: str) -> None:
        response = await self._client.post(
            self.url,
            json={"jsonrpc": "2.0", "method": method},
            headers=self._headers(),
        )
        response.raise_for_status()


def _decode_message(response: httpx.Response, request_id: int) -> dict[str, Any]:
    content_type = response.headers.get("content-type", "")
    if "text/event-stream" not in content_type:
        message = response.json()
        if not isinstance(message, dict):
            raise ToolInvocationError("Malformed JSON-RPC response")
        return message

    for line in response.text.splitlines():
        if not line.startswith("data:"):
            continue
        try:
            message = json.loads(line[len("data:"):].strip())
        except json.JSONDecodeError:
            continue
        if isinstance(message, dict) and message.get("id") == request_id:
            return message
    raise ToolInvocationError(f"No response for request {request_id} in event stream")


# ── Manager ──────────────────────────────────────────────


class MCPClientManager(ToolInvoker):
    """
    Owns every open MCP session.  Sessions are keyed by (user_scope, server)
    so two users never share credentials or session state.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport
        self._sessions: dict[tuple[str, str], MCPSession] = {}
        self._pending: dict[tuple[str, str], asyncio.Task] = {}

    def open_connections(self, user_scope: str) -> int:
        keys = set(self._sessions) | set(self._pending)
        return sum(1 for scope, _ in keys if scope == user_scope)

    async def connect(
        self,
        server: str,
        credentials: dict[str, str],
        user_scope: str,
        url: Optional[str] = None,
    ) -> None:
        """
        Open (or reuse) the session for *user_scope* on *server*.  An existing
        session is reused only while its endpoint and credentials are
        unchanged; otherwise it is closed and reopened.
        """
        key = (user_scope, server)
        definition = get_server(server)
        headers = build_auth_headers(definition, credentials)
        endpoint = url or self.settings.mcp_server_urls.get(server) or definition.default_url
        if not endpoint:
            raise ConfigurationError(f"No endpoint configured for MCP server {server}")

        if key in self._pending:
            await self._pending[key]
        existing = self._sessions.get(key)
        if existing is not None:
            if existing.fingerprint == connection_fingerprint(endpoint, headers):
                return
            logger.info(f"[MCP] {server} credentials or endpoint changed for user {user_scope}; reconnecting")
            await self.disconnect(server, user_scope)

        limit = self.settings.mcp_max_connections_per_user
        if self.open_connections(user_scope) >= limit:
            raise ConnectionLimitError(
                f"User {user_scope} already has {limit} open MCP connections"
            )

        task = asyncio.ensure_future(self._open(key, definition, endpoint, headers))
        self._pending[key] = task
        try:
            await task
        finally:
            self._pending.pop(key, None)

    async def _open(
        self,
        key: tuple[str, str],
        definition: MCPServerDefinition,
        endpoint: str,
        headers: dict[str, str],
    ) -> None:
        session = MCPSession(definition, endpoint, headers, self.settings, self._transport)
        try:
            await asyncio.wait_for(
                session.initialize(), timeout=self.settings.mcp_list_tools_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            await session.close()
            raise ToolInvocationError(f"Connecting to {definition.name} timed out") from exc
        except httpx.HTTPError as exc:
            await session.close()
            raise ToolInvocationError(f"Connecting to {definition.name} failed: {exc}") from exc
        except ToolInvocationError:
            await session.close()
            raise
        self._sessions[key] = session

    def _session(self, server: str, user_scope: str) -> MCPSession:
        session = self._sessions.get((user_scope, server))
        if session is None:
            raise ToolInvocationError(f"Not connected to {server} for user {user_scope}")
        return session

    async def list_tools(self, server: str, user_scope: str) -> list[ToolDescriptor]:
        session = self._session(server, user_scope)
        timeout = self.settings.mcp_list_tools_timeout_seconds
        try:
            return await asyncio.wait_for(session.list_tools(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ToolInvocationError(f"{server} tools/list timed out after {timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ToolInvocationError(f"{server} tools/list failed: {exc}") from exc

    async def call_tool(
        self, server: str, tool: str, arguments: dict[str, Any], user_scope: str
    ) -> ToolPayload:
        session = self._session(server, user_scope)
        timeout = self.settings.mcp_call_tool_timeout_seconds
        try:
            return await asyncio.wait_for(session.call_tool(tool, arguments), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ToolInvocationError(f"{server}.{tool} timed out after {timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ToolInvocationError(f"{server}.{tool} failed: {exc}") from exc

    async def disconnect(self, server: str, user_scope: str) -> None:
        session = self._sessions.pop((user_scope, server), None)
        if session is not None:
            await session.close()
            logger.info(f"[MCP] Disconnected {server} for user {user_scope}")

    async def disconnect_all(self, user_scope: Optional[str] = None) -> None:
        for scope, server in list(self._sessions):
            if user_scope is None or scope == user_scope:
                await self.disconnect(server, scope)
