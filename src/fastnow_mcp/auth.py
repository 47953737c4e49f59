"""Authentication and authorization for the FastNow MCP gateway.

Handles:
- Bearer token extraction from the transport Authorization header
- Token validation against the external token store (fresh on every call)
- Scope enforcement per tool and per data resource
- The 401 challenge headers sent back to clients
"""

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.config import TokenStoreSettings
from shared.logging import get_logger
from shared.models import AccessToken, TokenGrant
from fastnow_mcp.errors import Forbidden, InternalError, Unauthorized

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def parse_scopes(raw: Any) -> frozenset[str]:
    """Scopes may be stored space-separated or as an array."""
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        return frozenset(raw.split())
    return frozenset(str(s) for s in raw)


class TokenStore(Protocol):
    """Lookup contract of the external token store."""

    async def lookup(self, token: str) -> Optional[AccessToken]:
        ...


class InMemoryTokenStore:
    """Dictionary-backed token store for tests and local development."""

    def __init__(self, tokens: Iterable[AccessToken] = ()) -> None:
        self._tokens: dict[str, AccessToken] = {t.token: t for t in tokens}

    def add(self, token: AccessToken) -> None:
        self._tokens[token.token] = token

    def revoke(self, token: str) -> bool:
        record = self._tokens.get(token)
        if record is None:
            return False
        self._tokens[token] = record.model_copy(update={"revoked": True})
        return True

    async def lookup(self, token: str) -> Optional[AccessToken]:
        return self._tokens.get(token)


class RestTokenStore:
    """
    Token store backed by the token table's REST interface.

    Issues ``GET <rest_url>/<table>?access_token=eq.<token>`` with the
    service key. Connection failures are retried; an HTTP error from the
    store is an outage, not an invalid token, and surfaces as
    ``InternalError``.
    """

    SELECT = "user_id,expires_at,revoked,scope"

    def __init__(
        self,
        settings: TokenStoreSettings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.timeout_seconds)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.service_key:
            headers["apikey"] = self.settings.service_key
            headers["Authorization"] = f"Bearer {self.settings.service_key}"
        return headers

    async def lookup(self, token: str) -> Optional[AccessToken]:
        url = f"{self.settings.rest_url.rstrip('/')}/{self.settings.table}"
        params = {"access_token": f"eq.{token}", "select": self.SELECT, "limit": "1"}

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.retry_attempts),
                wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.get(url, params=params, headers=self._headers())
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPStatusError as e:
            # The request URL carries the token; never log the exception text
            logger.error("Token store lookup failed", status=e.response.status_code)
            raise InternalError("Token store unavailable") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Token store lookup failed", error_type=type(e).__name__)
            raise InternalError("Token store unavailable") from e

        if not rows:
            return None

        row = rows[0]
        return AccessToken(
            token=token,
            user_id=str(row["user_id"]),
            expires_at=row["expires_at"],
            revoked=bool(row.get("revoked", False)),
            scopes=parse_scopes(row.get("scope")),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class TokenValidator:
    """
    Validates bearer tokens against a token store.

    A token is usable iff it exists, ``now < expires_at`` and it is not
    revoked. Nothing is cached: every call goes to the store, so a
    revocation takes effect on the very next request.
    """

    def __init__(self, store: TokenStore, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def validate(self, token: Optional[str]) -> TokenGrant:
        if not token:
            raise Unauthorized("Authentication required - no Bearer token in Authorization header")

        record = await self.store.lookup(token)
        if record is None:
            logger.warning("Token rejected", reason="unknown")
            raise Unauthorized("Invalid or expired access token")

        if _aware(record.expires_at) <= _aware(self.clock()):
            logger.warning("Token rejected", reason="expired", user=record.user_id)
            raise Unauthorized("Access token expired")

        if record.revoked:
            logger.warning("Token rejected", reason="revoked", user=record.user_id)
            raise Unauthorized("Access token revoked")

        return TokenGrant(user_id=record.user_id, scopes=record.scopes)


def require_scopes(grant: TokenGrant, required: Iterable[str]) -> None:
    """Raise ``Forbidden`` unless every required scope was granted."""
    missing = set(required) - grant.scopes
    if missing:
        logger.warning(
            "Access denied (scope mismatch)",
            user=grant.user_id,
            missing_scopes=sorted(missing),
        )
        raise Forbidden(missing)


def auth_challenge_headers(public_url: str, error: Unauthorized) -> dict[str, str]:
    """
    Headers for a 401 response.

    The challenge names the token realm; the Link header points clients at
    the discovery document so they can start the OAuth flow.
    """
    base = public_url.rstrip("/")
    challenge = f'Bearer realm="{base}", error="{error.challenge_error}"'
    if isinstance(error, Forbidden):
        challenge += f', scope="{" ".join(error.missing_scopes)}"'
    return {
        "WWW-Authenticate": challenge,
        "Link": f'<{base}/.well-known/mcp.json>; rel="oauth-authorization-server"',
    }
