"""FastNow MCP gateway.

Exposes the FastNow tool catalog and resources over MCP, validates
bearer tokens against the token store, and proxies authorized tool calls
to the upstream functions host.
"""

from fastnow_mcp.auth import InMemoryTokenStore, RestTokenStore, TokenValidator
from fastnow_mcp.dispatcher import DispatchOutcome, ProtocolDispatcher, ProtocolMethod
from fastnow_mcp.registry import ToolRegistry
from fastnow_mcp.resolver import EndpointResolver
from fastnow_mcp.resources import ResourceRegistry
from fastnow_mcp.upstream import UpstreamClient, UpstreamDataSource

__all__ = [
    "DispatchOutcome",
    "EndpointResolver",
    "InMemoryTokenStore",
    "ProtocolDispatcher",
    "ProtocolMethod",
    "ResourceRegistry",
    "RestTokenStore",
    "TokenValidator",
    "ToolRegistry",
    "UpstreamClient",
    "UpstreamDataSource",
]
