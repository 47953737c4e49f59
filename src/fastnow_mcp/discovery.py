"""Static discovery documents: OAuth server metadata and the MCP manifest."""

from typing import Any

from shared.config import Settings

SERVER_NAME = "FastNow MCP Server"
SERVER_VERSION = "2.0.0"
PROTOCOL_VERSION = "2024-11-05"


def oauth_metadata(settings: Settings) -> dict[str, Any]:
    """RFC 8414 authorization server metadata."""
    oauth = settings.oauth
    return {
        "issuer": oauth.issuer,
        "authorization_endpoint": oauth.authorization_endpoint,
        "token_endpoint": oauth.token_endpoint,
        "registration_endpoint": oauth.registration_endpoint,
        "scopes_supported": list(oauth.scopes),
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": ["S256"],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "none"],
    }


def mcp_manifest(settings: Settings, tool_count: int) -> dict[str, Any]:
    oauth = settings.oauth
    public_url = settings.server.public_url.rstrip("/")
    return {
        "$schema": "https://modelcontextprotocol.io/schemas/mcp.json",
        "name": SERVER_NAME,
        "description": (
            "Voice control for your fasting, nutrition, weight, and wellness "
            f"journey with FastNow - {tool_count} tools available"
        ),
        "version": SERVER_VERSION,
        "capabilities": {"resources": True, "tools": True, "prompts": False},
        "transports": {"http": {"url": f"{public_url}/mcp", "method": "POST"}},
        "authentication": {
            "type": "oauth2",
            "authorization_url": oauth.authorization_endpoint,
            "token_url": oauth.token_endpoint,
            "registration_url": oauth.registration_endpoint,
            "client_id": oauth.client_id,
            "scopes": " ".join(oauth.scopes),
        },
        "protectedResourceMetadata": oauth_metadata(settings),
    }


def initialize_result(settings: Settings) -> dict[str, Any]:
    """Result of the ``initialize`` handshake."""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {"tools": {}, "resources": {}},
        "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        "protectedResourceMetadata": oauth_metadata(settings),
    }
