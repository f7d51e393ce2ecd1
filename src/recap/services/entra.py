"""Entra ID client-credentials token provider for Cognitive Services calls.

Both remote stages (speech-to-text and summarization) authenticate with the
same bearer token, so the token is cached process-wide and refreshed by
whichever caller first finds it stale. Concurrent refreshes are harmless:
each one replaces the cached value with an equally valid, fresher token.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import structlog

from src.recap.core.monitoring import track_remote_call

logger = structlog.get_logger(__name__)

TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"

# Never hand out a token this close to its expiry.
EXPIRY_MARGIN_SECONDS = 60


class CredentialError(RuntimeError):
    """Raised when the token endpoint refuses or fails the exchange."""


@dataclass(frozen=True)
class CachedCredential:
    """Bearer token with its absolute expiry (epoch seconds)."""

    token: str
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return self.expires_at - EXPIRY_MARGIN_SECONDS > now


class EntraTokenProvider:
    """Acquires and caches client-credentials tokens for a fixed scope.

    Args:
        tenant_id: Entra tenant (directory) ID.
        client_id: Application (client) ID.
        client_secret: Client secret for the application.
        scope: OAuth2 scope, e.g. ``https://cognitiveservices.azure.com/.default``.
        timeout: HTTP timeout for the token request.
        clock: Time source in epoch seconds (injectable for tests).
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        scope: str,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._token_url = TOKEN_URL_TEMPLATE.format(tenant_id=tenant_id)
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        self._timeout = timeout
        self._clock = clock
        self._cached: CachedCredential | None = None

    @property
    def cached(self) -> CachedCredential | None:
        return self._cached

    async def get_token(self) -> str:
        """Return a bearer token valid for at least another minute.

        Raises:
            CredentialError: If the token endpoint returns an error status,
                cannot be reached, or answers without a usable token.
        """
        now = self._clock()
        cached = self._cached
        if cached is not None and cached.is_fresh(now):
            return cached.token

        data = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": self._scope,
        }
        try:
            async with track_remote_call("token") as tracker:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._token_url, data=data)
                tracker["status"] = str(response.status_code)
        except httpx.HTTPError as exc:
            raise CredentialError(f"Failed to reach Entra ID token endpoint: {exc}") from exc

        if response.status_code != 200:
            raise CredentialError(
                f"Failed to acquire Entra ID token: {response.status_code} {response.text}"
            )

        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = float(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as exc:
            raise CredentialError(f"Unusable Entra ID token response: {exc!r}") from exc
        if not token:
            raise CredentialError("Entra ID token response has an empty access_token")

        credential = CachedCredential(token=token, expires_at=now + expires_in)
        self._cached = credential
        logger.info("entra.token_refreshed", expires_in=expires_in)
        return credential.token
