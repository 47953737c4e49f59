"""Shared fixtures: small registries, an in-memory token store and a fake upstream."""

import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pytest
import structlog
from structlog._config import BoundLoggerLazyProxy

from shared.config import ServerSettings, Settings, UpstreamSettings
from shared.models import AccessToken, DataResource, HttpMethod, ToolDefinition, WidgetResource

UPSTREAM_BASE = "https://functions.test/v1"
PUBLIC_URL = "https://mcp.test"
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

ALL_SCOPES = frozenset({
    "read:fasting",
    "write:fasting",
    "read:food",
    "write:food",
})


class FakeUpstream:
    """Records every outbound request and answers from a route table."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Any] = {}

    def respond(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json: Optional[Any] = None,
        text: Optional[str] = None,
    ) -> None:
        self.routes[(method, "/v1" + path)] = (status_code, json, text)

    def fail(self, method: str, path: str, error: Exception) -> None:
        self.routes[(method, "/v1" + path)] = error

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(200, json={"success": True})
        if isinstance(route, Exception):
            raise route
        status_code, payload, text = route
        if text is not None:
            return httpx.Response(status_code, text=text)
        if payload is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=payload)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def _isolate_structlog():
    """Undo global structlog configuration (and cached loggers) left by app startup."""
    yield
    structlog.reset_defaults()
    for module in list(sys.modules.values()):
        for value in list(getattr(module, "__dict__", {}).values()):
            if isinstance(value, BoundLoggerLazyProxy):
                value.__dict__.pop("bind", None)


@pytest.fixture
def settings():
    return Settings(
        server=ServerSettings(public_url=PUBLIC_URL, enable_audit=False),
        upstream=UpstreamSettings(base_url=UPSTREAM_BASE),
    )


@pytest.fixture
def widget():
    return WidgetResource(
        uri="ui://widget/fasting-progress.html",
        name="Fasting Progress",
        description="Fasting timer",
        html="<html><body>fasting</body></html>",
        connect_domains=("https://cdn.test",),
        resource_domains=("https://cdn.test",),
    )


@pytest.fixture
def data_resource():
    return DataResource(
        uri="fastnow://user/current-fast",
        name="Current Fast",
        description="Active fasting session",
        endpoint="/gpt-fasting/current",
        required_scopes=frozenset({"read:fasting"}),
    )


@pytest.fixture
def tool_definitions():
    return [
        ToolDefinition(
            name="get_current_fast",
            description="Get the active fast",
            endpoint_template="/gpt-fasting/current",
            http_method=HttpMethod.GET,
            required_scopes=frozenset({"read:fasting"}),
            linked_resource_uri="ui://widget/fasting-progress.html",
            read_only=True,
        ),
        ToolDefinition(
            name="start_fast",
            description="Start a fast",
            input_schema={
                "type": "object",
                "properties": {"goal_hours": {"type": "number", "minimum": 1, "maximum": 72}},
                "required": [],
            },
            endpoint_template="/gpt-fasting/start",
            http_method=HttpMethod.POST,
            required_scopes=frozenset({"write:fasting"}),
        ),
        ToolDefinition(
            name="delete_food",
            description="Delete a food entry",
            input_schema={
                "type": "object",
                "properties": {"food_id": {"type": "string"}},
                "required": ["food_id"],
            },
            endpoint_template="/gpt-food/{food_id}",
            http_method=HttpMethod.DELETE,
            required_scopes=frozenset({"write:food"}),
        ),
        ToolDefinition(
            name="get_food_history",
            description="Food history",
            input_schema={
                "type": "object",
                "properties": {
                    "days": {"type": "number"},
                    "consumed": {"type": "boolean"},
                    "status": {"type": ["string", "null"]},
                },
                "required": [],
            },
            endpoint_template="/gpt-food/history",
            http_method=HttpMethod.GET,
            required_scopes=frozenset({"read:food"}),
            read_only=True,
        ),
    ]


@pytest.fixture
def tools(tool_definitions):
    from fastnow_mcp.registry import ToolRegistry

    return ToolRegistry(tool_definitions, known_scopes=ALL_SCOPES)


@pytest.fixture
def resources(widget, data_resource):
    from fastnow_mcp.resources import ResourceRegistry

    return ResourceRegistry([widget], [data_resource])


@pytest.fixture
def token_store():
    from fastnow_mcp.auth import InMemoryTokenStore

    return InMemoryTokenStore([
        AccessToken(
            token="valid-token",
            user_id="user-1",
            expires_at=NOW + timedelta(hours=1),
            scopes=ALL_SCOPES,
        ),
        AccessToken(
            token="expired-token",
            user_id="user-2",
            expires_at=NOW - timedelta(seconds=1),
            scopes=ALL_SCOPES,
        ),
        AccessToken(
            token="read-only-token",
            user_id="user-3",
            expires_at=NOW + timedelta(hours=1),
            scopes=frozenset({"read:fasting"}),
        ),
    ])


@pytest.fixture
def validator(token_store):
    from fastnow_mcp.auth import TokenValidator

    return TokenValidator(token_store, clock=lambda: NOW)


@pytest.fixture
def upstream_fake():
    return FakeUpstream()


@pytest.fixture
def resolver():
    from fastnow_mcp.resolver import EndpointResolver

    return EndpointResolver(UPSTREAM_BASE)


@pytest.fixture
def audit_logger(tmp_path):
    from fastnow_mcp.audit import AuditLogger

    return AuditLogger(log_path=str(tmp_path / "audit.log"), enabled=True, buffer_size=1)


@pytest.fixture
def dispatcher(settings, tools, resources, validator, resolver, upstream_fake, audit_logger):
    from fastnow_mcp.dispatcher import ProtocolDispatcher
    from fastnow_mcp.upstream import UpstreamClient, UpstreamDataSource

    upstream = UpstreamClient(client=upstream_fake.client())
    return ProtocolDispatcher(
        settings=settings,
        tools=tools,
        resources=resources,
        validator=validator,
        resolver=resolver,
        upstream=upstream,
        data_source=UpstreamDataSource(resolver, upstream),
        audit_logger=audit_logger,
    )


def envelope(method: str, params: Optional[dict[str, Any]] = None, rpc_id: Any = 1) -> dict[str, Any]:
    body: dict[str, Any] = {"jsonrpc": "2.0", "id": rpc_id, "method": method}
    if params is not None:
        body["params"] = params
    return body
