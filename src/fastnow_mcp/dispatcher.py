"""Protocol Dispatcher.

Entry point for one MCP envelope. Parses it, dispatches on the protocol
method, and always produces exactly one response envelope: handler
failures are converted to error envelopes here and never escape.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from shared.config import Settings
from shared.logging import bind_request_context, clear_request_context, get_logger
from shared.models import (
    CallStatus,
    DataResource,
    RpcError,
    RpcRequest,
    RpcResponse,
    ToolDefinition,
    WidgetResource,
)
from fastnow_mcp.audit import AuditLogger
from fastnow_mcp.auth import (
    TokenValidator,
    auth_challenge_headers,
    extract_bearer_token,
    require_scopes,
)
from fastnow_mcp.composer import compose
from fastnow_mcp.discovery import initialize_result
from fastnow_mcp.errors import (
    CatalogError,
    GatewayError,
    InternalError,
    InvalidParams,
    InvalidRequest,
    MethodNotFound,
    NotFound,
    Unauthorized,
    UpstreamError,
)
from fastnow_mcp.registry import ToolRegistry
from fastnow_mcp.resolver import EndpointResolver
from fastnow_mcp.resources import ResourceRegistry
from fastnow_mcp.upstream import DataSource, UpstreamClient

logger = get_logger(__name__)


class ProtocolMethod(str, Enum):
    """The closed set of protocol methods this gateway answers."""
    INITIALIZE = "initialize"
    TOOLS_LIST = "tools/list"
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"
    TOOLS_CALL = "tools/call"


@dataclass
class CallContext:
    """Per-request inputs handed to a method handler."""
    rpc_id: Any
    params: dict[str, Any]
    authorization: Optional[str] = None


@dataclass
class DispatchOutcome:
    """The response envelope plus how the transport should send it."""
    envelope: dict[str, Any]
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return "error" in self.envelope


Handler = Callable[[CallContext], Awaitable[dict[str, Any]]]


def _audit_status(error: BaseException) -> CallStatus:
    if isinstance(error, Unauthorized):
        return CallStatus.UNAUTHORIZED
    if isinstance(error, InvalidRequest):
        return CallStatus.INVALID
    if isinstance(error, UpstreamError):
        return CallStatus.UPSTREAM_ERROR
    return CallStatus.ERROR


def describe_tool(tool: ToolDefinition, widget: Optional[WidgetResource]) -> dict[str, Any]:
    """Project a tool definition into its ``tools/list`` entry."""
    entry: dict[str, Any] = {
        "name": tool.name,
        "description": tool.description,
        "inputSchema": tool.input_schema,
    }
    if tool.read_only:
        entry["annotations"] = {"readOnlyHint": True}
    if widget is not None:
        entry["_meta"] = {
            "openai/outputTemplate": widget.uri,
            "openai/scopes": sorted(tool.required_scopes),
            "openai/widgetCSP": widget.csp,
        }
    return entry


class ProtocolDispatcher:
    """
    Routes protocol envelopes to method handlers.

    All collaborators are injected, so the dispatcher can be exercised with
    in-memory registries, an in-memory token store and a fake upstream.
    """

    def __init__(
        self,
        settings: Settings,
        tools: ToolRegistry,
        resources: ResourceRegistry,
        validator: TokenValidator,
        resolver: EndpointResolver,
        upstream: UpstreamClient,
        data_source: DataSource,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self.settings = settings
        self.tools = tools
        self.resources = resources
        self.validator = validator
        self.resolver = resolver
        self.upstream = upstream
        self.data_source = data_source
        self.audit_logger = audit_logger

        dangling = sorted(
            uri for uri in tools.linked_resource_uris() if resources.get_widget(uri) is None
        )
        if dangling:
            raise CatalogError(f"Tools link unknown widgets: {', '.join(dangling)}")

        self._handlers = self._handler_table()
        unhandled = set(ProtocolMethod) - set(self._handlers)
        if unhandled:
            raise RuntimeError(f"No handler for: {', '.join(sorted(m.value for m in unhandled))}")

    def _handler_table(self) -> dict[ProtocolMethod, Handler]:
        return {
            ProtocolMethod.INITIALIZE: self._initialize,
            ProtocolMethod.TOOLS_LIST: self._list_tools,
            ProtocolMethod.RESOURCES_LIST: self._list_resources,
            ProtocolMethod.RESOURCES_READ: self._read_resource,
            ProtocolMethod.TOOLS_CALL: self._call_tool,
        }

    async def dispatch(self, payload: Any, authorization: Optional[str] = None) -> DispatchOutcome:
        """
        Handle one envelope.

        Args:
            payload: Decoded JSON request body
            authorization: Raw ``Authorization`` header, if any

        Returns:
            Exactly one response envelope with the request's id
        """
        rpc_id = payload.get("id") if isinstance(payload, dict) else None

        try:
            request = self._parse(payload)
            rpc_id = request.id
            bind_request_context(rpc_id=rpc_id, rpc_method=request.method)

            try:
                method = ProtocolMethod(request.method)
            except ValueError:
                raise MethodNotFound(f"Method not found: {request.method}") from None

            logger.info("MCP request")
            context = CallContext(
                rpc_id=rpc_id,
                params=request.params or {},
                authorization=authorization,
            )
            result = await self._handlers[method](context)
            return DispatchOutcome(RpcResponse(id=rpc_id, result=result).to_wire())

        except GatewayError as e:
            return self.error_outcome(rpc_id, e)
        except Exception:
            logger.exception("Unhandled error while dispatching")
            return self.error_outcome(rpc_id, InternalError("Internal server error"))
        finally:
            clear_request_context()

    def _parse(self, payload: Any) -> RpcRequest:
        if not isinstance(payload, dict):
            raise InvalidRequest("Request must be a JSON object")
        try:
            return RpcRequest.model_validate(payload)
        except ValidationError as e:
            problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise InvalidRequest("Invalid request envelope", data={"errors": problems}) from None

    def error_outcome(self, rpc_id: Any, error: GatewayError) -> DispatchOutcome:
        if error.http_status >= 500:
            logger.error("MCP request failed", code=error.code, error=error.message)
        else:
            logger.warning("MCP request rejected", code=error.code, error=error.message)

        envelope = RpcResponse(
            id=rpc_id,
            error=RpcError(code=error.code, message=error.message, data=error.data),
        ).to_wire()

        headers = {}
        if isinstance(error, Unauthorized):
            headers = auth_challenge_headers(self.settings.server.public_url, error)
        return DispatchOutcome(envelope, status_code=error.http_status, headers=headers)

    # Handlers

    async def _initialize(self, context: CallContext) -> dict[str, Any]:
        return initialize_result(self.settings)

    async def _list_tools(self, context: CallContext) -> dict[str, Any]:
        tools = [
            describe_tool(tool, self.resources.get_widget(tool.linked_resource_uri or ""))
            for tool in self.tools.list_tools()
        ]
        logger.debug("Listing tools", count=len(tools))
        return {"tools": tools}

    async def _list_resources(self, context: CallContext) -> dict[str, Any]:
        return {"resources": self.resources.describe()}

    async def _read_resource(self, context: CallContext) -> dict[str, Any]:
        uri = context.params.get("uri")
        if not uri or not isinstance(uri, str):
            raise InvalidParams("Missing uri parameter")

        resource = self.resources.get(uri)
        if resource is None:
            raise NotFound(f"Unknown resource: {uri}")

        if isinstance(resource, WidgetResource):
            return {"contents": [{"uri": uri, "mimeType": resource.mime_type, "text": resource.html}]}

        return {"contents": [await self._read_data_resource(resource, context)]}

    async def _read_data_resource(self, resource: DataResource, context: CallContext) -> dict[str, Any]:
        token = extract_bearer_token(context.authorization)
        grant = await self.validator.validate(token)
        require_scopes(grant, resource.required_scopes)

        data = await self.data_source.fetch(resource, grant, token)
        return {"uri": resource.uri, "mimeType": resource.mime_type, "text": json.dumps(data)}

    async def _call_tool(self, context: CallContext) -> dict[str, Any]:
        name = context.params.get("name")
        if not name or not isinstance(name, str):
            raise InvalidParams("Missing tool name")

        arguments = context.params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidParams("Tool arguments must be an object")

        tool = self.tools.get(name)
        if tool is None:
            raise NotFound(f"Tool not found: {name}")

        start_time = time.perf_counter()
        status = CallStatus.ERROR
        error: Optional[str] = None
        user_id: Optional[str] = None

        try:
            token = extract_bearer_token(context.authorization)
            grant = await self.validator.validate(token)
            user_id = grant.user_id
            require_scopes(grant, tool.required_scopes)

            ok, problems = self.tools.validate_arguments(tool, arguments)
            if not ok:
                raise InvalidParams(
                    f"Invalid arguments for {tool.name}: {'; '.join(problems)}",
                    data={"errors": problems},
                )

            call = self.resolver.resolve(tool, arguments, token)
            result = await self.upstream.send(call)
            content = compose(result, tool.linked_resource_uri, self.resources)
            status = CallStatus.SUCCESS
            return {"content": content}

        except Exception as e:
            status = _audit_status(e)
            error = getattr(e, "message", str(e))
            raise

        finally:
            if self.audit_logger is not None:
                entry = self.audit_logger.create_entry(
                    tool,
                    arguments,
                    status,
                    user_id=user_id,
                    rpc_id=context.rpc_id,
                    error=error,
                    execution_time_ms=(time.perf_counter() - start_time) * 1000,
                )
                await self.audit_logger.log(entry)
