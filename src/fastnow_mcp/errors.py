"""Gateway error taxonomy.

Each error knows its JSON-RPC code and the HTTP status the envelope is
returned with. Handlers raise these; the dispatcher converts them into
exactly one error envelope.
"""

from typing import Any, Optional

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
UNAUTHORIZED = -32001
NOT_FOUND = -32002
UPSTREAM_ERROR = -32003


class GatewayError(Exception):
    """Base class for failures that map onto an error envelope."""

    code: int = INTERNAL_ERROR
    http_status: int = 500

    def __init__(self, message: str, data: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


class InvalidRequest(GatewayError):
    """The envelope itself is malformed."""
    code = INVALID_REQUEST
    http_status = 400


class ParseError(InvalidRequest):
    """The request body is not JSON."""
    code = PARSE_ERROR


class InvalidParams(InvalidRequest):
    """A required param is missing or arguments violate the tool schema."""
    code = INVALID_PARAMS


class MethodNotFound(GatewayError):
    code = METHOD_NOT_FOUND
    http_status = 200


class Unauthorized(GatewayError):
    """Missing, unknown, expired or revoked token."""
    code = UNAUTHORIZED
    http_status = 401
    challenge_error = "invalid_token"

    def __init__(
        self,
        message: str = "Authentication required",
        data: Optional[Any] = None,
    ) -> None:
        super().__init__(message, data)


class Forbidden(Unauthorized):
    """Valid token lacking a scope the operation requires."""
    challenge_error = "insufficient_scope"

    def __init__(self, missing_scopes: set[str] | frozenset[str]) -> None:
        self.missing_scopes = sorted(missing_scopes)
        super().__init__(
            f"Insufficient scope: requires {', '.join(self.missing_scopes)}",
            data={"missing_scopes": self.missing_scopes},
        )


class NotFound(GatewayError):
    """Unknown tool name or resource URI."""
    code = NOT_FOUND
    http_status = 404


class UpstreamError(GatewayError):
    """
    The delegated HTTP call did not succeed.

    ``status`` is the upstream HTTP status when one was received; the
    decoded upstream payload is preserved in ``data`` for diagnosis.
    """
    code = UPSTREAM_ERROR
    http_status = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        payload: Optional[Any] = None,
        timed_out: bool = False,
    ) -> None:
        data: dict[str, Any] = {}
        if status is not None:
            data["status"] = status
        if payload is not None:
            data["upstream"] = payload
        super().__init__(message, data or None)
        self.status = status
        self.payload = payload
        self.timed_out = timed_out
        if timed_out:
            self.http_status = 504


class InternalError(GatewayError):
    """Anything else. The message never carries a traceback."""
    code = INTERNAL_ERROR
    http_status = 500


class CatalogError(Exception):
    """A static catalog failed validation at startup."""
