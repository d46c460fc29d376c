"""Bearer credential acquisition, caching and refresh.

The AuthManager owns the single process-wide Credential. Reads are free;
a refresh is coalesced so that concurrent invocations which all find the
credential expired (or rejected) share one token exchange.
"""

import asyncio
import json
import logging
import time
from typing import Callable, Iterable, Optional, Protocol
from urllib.parse import urlencode

from .errors import AuthenticationError, BridgeError
from .models import Credential
from .transport import Transport

NEVER_EXPIRES = float("inf")


class TokenSource(Protocol):
    async def fetch_credential(self) -> Credential:
        ...


class StaticTokenSource:
    """Serves a pre-issued access token

    Args:
        access_token: Bearer token obtained out of band
        expires_at: Epoch seconds after which the token is unusable
    """

    def __init__(self, access_token: str, expires_at: Optional[float] = None):
        if not access_token:
            raise ValueError("access_token is required")
        self._credential = Credential(
            access_token=access_token,
            expires_at=NEVER_EXPIRES if expires_at is None else expires_at,
        )

    async def fetch_credential(self) -> Credential:
        return self._credential


class ClientCredentialsTokenSource:
    """OAuth2 client-credentials exchange against a token endpoint

    Args:
        transport: Transport used for the token request
        token_url: Token endpoint of the issuing authority
        client_id: Application (client) id
        client_secret: Application secret
        scopes: Scopes to request
        timeout: Timeout for the exchange in seconds
        clock: Time source, epoch seconds
    """

    def __init__(
        self,
        transport: Transport,
        token_url: str,
        client_id: str,
        client_secret: str,
        scopes: Iterable[str],
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.transport = transport
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = tuple(scopes)
        self.timeout = timeout
        self.clock = clock

    async def fetch_credential(self) -> Credential:
        form = urlencode({
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": " ".join(self.scopes),
        }).encode("utf-8")
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        issued_at = self.clock()
        try:
            response = await self.transport.send("POST", self.token_url, headers, form, self.timeout)
        except BridgeError as e:
            raise AuthenticationError(f"Token exchange failed: {e.message}") from e

        try:
            payload = json.loads(response.body.decode("utf-8")) if response.body else {}
        except (UnicodeDecodeError, ValueError):
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if not response.ok:
            reason = payload.get("error_description") or payload.get("error") or f"status {response.status}"
            raise AuthenticationError(f"Token exchange rejected: {reason}")

        token = payload.get("access_token")
        if not token:
            raise AuthenticationError("Token response did not contain an access_token")
        try:
            expires_in = float(payload.get("expires_in", 3600))
        except (TypeError, ValueError):
            raise AuthenticationError("Token response has a malformed expires_in")

        granted = payload.get("scope")
        scopes = frozenset(granted.split()) if granted else frozenset(self.scopes)
        return Credential(access_token=token, expires_at=issued_at + expires_in, scopes=scopes)


class AuthManager:
    """Caches one Credential and refreshes it on expiry or rejection

    Args:
        token_source: Where new credentials come from
        refresh_margin: Seconds of remaining validity a cached credential must have
        clock: Time source, epoch seconds
    """

    def __init__(
        self,
        token_source: TokenSource,
        refresh_margin: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.token_source = token_source
        self.refresh_margin = refresh_margin
        self.clock = clock
        self._credential: Optional[Credential] = None
        self._inflight: Optional[asyncio.Future] = None
        self.exchange_count = 0

    @property
    def cached(self) -> Optional[Credential]:
        return self._credential

    async def acquire_credential(self) -> Credential:
        """Return a usable credential, exchanging for a new one if needed

        Raises:
            AuthenticationError: If the token exchange fails
        """
        credential = self._credential
        if credential is not None and credential.is_valid(self.clock(), self.refresh_margin):
            return credential

        if self._inflight is None:
            logging.info("[AuthManager] Acquiring a new access token")
            self._inflight = asyncio.ensure_future(self._exchange())
        return await asyncio.shield(self._inflight)

    async def _exchange(self) -> Credential:
        self.exchange_count += 1
        try:
            credential = await self.token_source.fetch_credential()
        except AuthenticationError:
            logging.error("[AuthManager] Token exchange failed")
            raise
        except BridgeError as e:
            raise AuthenticationError(f"Could not acquire a credential: {e.message}") from e
        finally:
            self._inflight = None

        if not credential.is_valid(self.clock()):
            raise AuthenticationError("Token authority issued an already expired credential")
        self._credential = credential
        logging.info(f"[AuthManager] Access token cached, expires in {credential.expires_at - self.clock():.0f}s")
        return credential

    def invalidate(self, stale: Optional[Credential] = None) -> None:
        """Force the next acquisition to bypass the cache

        Args:
            stale: Only invalidate if this is still the cached credential
        """
        if stale is not None and self._credential is not stale:
            return
        if self._credential is not None:
            logging.info("[AuthManager] Cached access token invalidated")
        self._credential = None


__all__ = [
    "TokenSource",
    "StaticTokenSource",
    "ClientCredentialsTokenSource",
    "AuthManager",
]
