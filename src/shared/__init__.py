"""Shared configuration, logging and data models for the FastNow MCP gateway."""

from shared.models import (
    AccessToken,
    DataResource,
    HttpMethod,
    OutboundCall,
    RpcRequest,
    RpcResponse,
    TokenGrant,
    ToolDefinition,
    WidgetResource,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AccessToken",
    "DataResource",
    "HttpMethod",
    "OutboundCall",
    "RpcRequest",
    "RpcResponse",
    "TokenGrant",
    "ToolDefinition",
    "WidgetResource",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
