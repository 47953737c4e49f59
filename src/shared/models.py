"""Core data models for the FastNow MCP gateway.

Catalog records (tools, widgets, data resources) are frozen: they are
built once at startup and shared read-only by every request. Tokens,
outbound calls and envelopes live for a single request.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

WIDGET_MIME_TYPE = "text/html+skybridge"
JSON_MIME_TYPE = "application/json"


def _empty_object_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


class HttpMethod(str, Enum):
    """HTTP verbs an upstream endpoint can be called with."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"

    @property
    def sends_body(self) -> bool:
        """Write-style verbs carry arguments as a JSON body."""
        return self in (HttpMethod.POST, HttpMethod.PUT)


class ToolDefinition(BaseModel):
    """
    Declarative description of one remote tool.

    The endpoint template may contain ``{placeholder}`` segments that are
    filled from call arguments of the same name.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    description: str
    input_schema: dict[str, Any] = Field(default_factory=_empty_object_schema)
    endpoint_template: str
    http_method: HttpMethod
    required_scopes: frozenset[str] = Field(default_factory=frozenset)
    linked_resource_uri: Optional[str] = None
    read_only: bool = False


class WidgetResource(BaseModel):
    """A UI resource served as a static HTML document."""
    model_config = ConfigDict(frozen=True)

    uri: str
    name: str
    description: str = ""
    mime_type: str = WIDGET_MIME_TYPE
    html: str
    connect_domains: tuple[str, ...] = ()
    resource_domains: tuple[str, ...] = ()

    @property
    def csp(self) -> dict[str, list[str]]:
        return {
            "connect_domains": list(self.connect_domains),
            "resource_domains": list(self.resource_domains),
        }


class DataResource(BaseModel):
    """A resource whose payload is computed per request by the upstream."""
    model_config = ConfigDict(frozen=True)

    uri: str
    name: str
    description: str = ""
    mime_type: str = JSON_MIME_TYPE
    endpoint: str
    required_scopes: frozenset[str] = Field(default_factory=frozenset)


class AccessToken(BaseModel):
    """Token record as held by the external token store."""
    token: str
    user_id: str
    expires_at: datetime
    revoked: bool = False
    scopes: frozenset[str] = Field(default_factory=frozenset)


class TokenGrant(BaseModel):
    """What a successfully validated token entitles the caller to."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    scopes: frozenset[str] = Field(default_factory=frozenset)


class OutboundCall(BaseModel):
    """A fully resolved request to the upstream backend. Never persisted."""
    method: HttpMethod
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, str] = Field(default_factory=dict)
    body: Optional[dict[str, Any]] = None


class RpcRequest(BaseModel):
    """One inbound protocol envelope."""
    jsonrpc: Optional[str] = "2.0"
    id: Any = None
    method: str = Field(..., min_length=1)
    params: Optional[dict[str, Any]] = None


class RpcError(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


class RpcResponse(BaseModel):
    """
    One outbound protocol envelope.

    Exactly one of ``result`` and ``error`` is set; ``id`` echoes the
    request id unchanged.
    """
    jsonrpc: str = "2.0"
    id: Any = None
    result: Optional[dict[str, Any]] = None
    error: Optional[RpcError] = None

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            body["error"] = self.error.model_dump(exclude_none=True)
        else:
            body["result"] = self.result if self.result is not None else {}
        return body


class CallStatus(str, Enum):
    """Outcome of a tool call, as recorded in the audit trail."""
    SUCCESS = "success"
    UNAUTHORIZED = "unauthorized"
    INVALID = "invalid"
    UPSTREAM_ERROR = "upstream_error"
    ERROR = "error"


class AuditEntry(BaseModel):
    """
    Audit record for one tool invocation.

    Captures who called which tool, with what (redacted) arguments, and
    how it ended.
    """
    id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    rpc_id: Any = None

    user_id: Optional[str] = None
    tool_name: str
    http_method: HttpMethod
    arguments: dict[str, Any] = Field(default_factory=dict)

    status: CallStatus
    error: Optional[str] = None
    execution_time_ms: float = 0
