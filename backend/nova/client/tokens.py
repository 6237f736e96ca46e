"""Bearer-token handling for Nova API callers."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

# Refresh proactively when the access token expires sooner than this
REFRESH_MARGIN_SECONDS = 5 * 60


class NovaClientError(Exception):
    """A Nova API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(NovaClientError):
    """No usable token and refreshing did not produce one."""


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str | None = None


Refresher = Callable[[str], Awaitable[TokenPair]]


def token_expires_within(token: str, seconds: float, *, now: float | None = None) -> bool:
    """True if the token's ``exp`` is less than ``seconds`` away. Unreadable tokens count as expiring."""
    try:
        claims = jwt.get_unverified_claims(token)
        expires_at = float(claims["exp"])
    except (JWTError, KeyError, TypeError, ValueError):
        return True
    current = time.time() if now is None else now
    return expires_at - current < seconds


class TokenProvider:
    """
    Hands out access tokens, refreshing them when needed.

    Concurrent callers that need a refresh share a single in-flight refresh
    call. A failed refresh clears the stored tokens.
    """

    def __init__(
        self,
        tokens: TokenPair | None,
        refresher: Refresher,
        *,
        refresh_margin: float = REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._tokens = tokens
        self._refresher = refresher
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._inflight: asyncio.Future[TokenPair] | None = None

    @property
    def tokens(self) -> TokenPair | None:
        return self._tokens

    async def get_access_token(self) -> str:
        """A token valid for at least the refresh margin, refreshing first if needed."""
        if self._tokens is None:
            raise AuthenticationError("Not authenticated", status_code=401)
        if token_expires_within(self._tokens.access_token, self._refresh_margin, now=self._clock()):
            return (await self.refresh(stale_token=self._tokens.access_token)).access_token
        return self._tokens.access_token

    async def refresh(self, *, stale_token: str | None = None) -> TokenPair:
        """
        Refresh the tokens, joining any refresh already in flight.

        If ``stale_token`` is given and the stored token has already changed
        (another caller refreshed), the stored pair is returned as-is.
        """
        if self._tokens is not None and stale_token is not None and self._tokens.access_token != stale_token:
            return self._tokens

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._do_refresh())
        inflight = self._inflight
        try:
            return await asyncio.shield(inflight)
        finally:
            if self._inflight is inflight and inflight.done():
                self._inflight = None

    async def _do_refresh(self) -> TokenPair:
        if self._tokens is None or not self._tokens.refresh_token:
            self._tokens = None
            raise AuthenticationError("Session expired", status_code=401)
        try:
            fresh = await self._refresher(self._tokens.refresh_token)
        except Exception as e:
            logger.warning("Token refresh failed: %s", e)
            self._tokens = None
            raise AuthenticationError("Session expired", status_code=401) from e

        if fresh.refresh_token is None:
            fresh = TokenPair(fresh.access_token, self._tokens.refresh_token)
        self._tokens = fresh
        logger.debug("Access token refreshed")
        return fresh


def http_refresher(client: httpx.AsyncClient, url: str) -> Refresher:
    """Refresher that posts the refresh token to an identity endpoint returning camelCase tokens."""

    async def refresh(refresh_token: str) -> TokenPair:
        response = await client.post(url, json={"refreshToken": refresh_token})
        response.raise_for_status()
        body = response.json()
        return TokenPair(access_token=body["accessToken"], refresh_token=body.get("refreshToken"))

    return refresh
