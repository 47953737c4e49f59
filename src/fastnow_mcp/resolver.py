"""Endpoint Resolver.

Turns a tool definition plus call arguments into a concrete outbound
request against the upstream backend.

Arguments whose name matches a ``{placeholder}`` in the endpoint template
become path segments and are consumed; they never reappear in the query
string or body. What remains goes to the query string for GET/DELETE and
to a JSON body for POST/PUT.

The caller's bearer token is forwarded under a dedicated header
(``X-OAuth-Token`` by default) and never as ``Authorization``: the
upstream host runs its own platform-level JWT check on ``Authorization``
and would reject the opaque OAuth token before the function sees it.
"""

import json
from typing import Any
from urllib.parse import quote

from shared.models import DataResource, HttpMethod, OutboundCall, ToolDefinition
from fastnow_mcp.errors import InvalidParams
from fastnow_mcp.registry import PLACEHOLDER

DEFAULT_TOKEN_HEADER = "X-OAuth-Token"


def stringify(value: Any) -> str:
    """Render an argument the way it would appear in JSON."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


class EndpointResolver:
    """Builds ``OutboundCall`` objects; holds no per-request state."""

    def __init__(self, base_url: str, token_header: str = DEFAULT_TOKEN_HEADER) -> None:
        if token_header.lower() == "authorization":
            raise ValueError("Forwarded token header must not be Authorization")
        self.base_url = base_url.rstrip("/")
        self.token_header = token_header

    def headers(self, token: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            self.token_header: token,
        }

    def substitute(self, template: str, arguments: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """
        Fill path placeholders from ``arguments``.

        Returns the resolved path and the arguments that were not consumed.
        """
        remaining = dict(arguments)

        def fill(match) -> str:
            key = match.group(1)
            if key not in remaining:
                return match.group(0)
            return quote(stringify(remaining.pop(key)), safe="")

        path = PLACEHOLDER.sub(fill, template)
        unresolved = PLACEHOLDER.findall(path)
        if unresolved:
            raise InvalidParams(
                f"Missing path arguments: {', '.join(unresolved)}",
                data={"missing": unresolved},
            )
        return path, remaining

    def resolve(
        self,
        tool: ToolDefinition,
        arguments: dict[str, Any],
        token: str,
    ) -> OutboundCall:
        path, remaining = self.substitute(tool.endpoint_template, arguments)
        return self._build(tool.http_method, path, remaining, token)

    def resolve_resource(self, resource: DataResource, token: str) -> OutboundCall:
        return self._build(HttpMethod.GET, resource.endpoint, {}, token)

    def _build(
        self,
        method: HttpMethod,
        path: str,
        remaining: dict[str, Any],
        token: str,
    ) -> OutboundCall:
        params: dict[str, str] = {}
        body = None

        if method.sends_body:
            body = remaining or None
        else:
            params = {k: stringify(v) for k, v in remaining.items() if v is not None}

        return OutboundCall(
            method=method,
            url=f"{self.base_url}{path}",
            headers=self.headers(token),
            params=params,
            body=body,
        )
