"""Access-token cache for the service-account jwt-bearer exchange."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Final

import httpx

from lessonai.ai.credentials import CredentialSigner
from lessonai.ai.errors import TokenExchangeError

JWT_BEARER_GRANT: Final[str] = "urn:ietf:params:oauth:grant-type:jwt-bearer"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
  """A bearer token and the instant after which it must not be served."""

  token: str = field(repr=False)
  expires_at: float

  def seconds_left(self, now: float) -> float:
    return self.expires_at - now


class TokenCache:
  """Serve a cached access token and refresh it through a single critical section.

  The cached expiry is the vendor-declared lifetime minus ``expiry_margin_seconds``
  (55 of 60 minutes by default) and a token is only served while more than
  ``refresh_threshold_seconds`` remain. Concurrent callers that find the cache
  cold or stale queue on one lock; the first performs the exchange and the rest
  reuse its result.
  """

  def __init__(
    self,
    signer: CredentialSigner,
    *,
    http_client: httpx.AsyncClient,
    clock: Callable[[], float] = time.time,
    timeout_seconds: float = 30.0,
    refresh_threshold_seconds: float = 60.0,
    expiry_margin_seconds: float = 300.0,
    default_lifetime_seconds: float = 3600.0,
  ) -> None:
    self._signer = signer
    self._http = http_client
    self._clock = clock
    self._timeout_seconds = timeout_seconds
    self._refresh_threshold_seconds = refresh_threshold_seconds
    self._expiry_margin_seconds = expiry_margin_seconds
    self._default_lifetime_seconds = default_lifetime_seconds
    self._lock = asyncio.Lock()
    self._token: AccessToken | None = None
    self.exchange_count = 0

  def _usable(self, now: float) -> AccessToken | None:
    token = self._token
    if token is None or token.seconds_left(now) <= self._refresh_threshold_seconds:
      return None
    return token

  async def get_access_token(self) -> str:
    """Return a token with more than the refresh threshold of validity left."""
    cached = self._usable(self._clock())
    if cached is not None:
      return cached.token

    async with self._lock:
      # Re-check: another caller may have refreshed while this one waited.
      cached = self._usable(self._clock())
      if cached is not None:
        return cached.token

      self._token = await self._exchange()
      return self._token.token

  def invalidate(self) -> None:
    """Drop the cached token so the next call performs a fresh exchange."""
    self._token = None

  async def _exchange(self) -> AccessToken:
    issued_at = self._clock()
    assertion = self._signer.create_assertion(issued_at)
    self.exchange_count += 1
    logger.info("Exchanging service account assertion at %s", self._signer.token_uri)

    try:
      response = await self._http.post(self._signer.token_uri, data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion}, headers={"Content-Type": "application/x-www-form-urlencoded"}, timeout=self._timeout_seconds)
    except httpx.HTTPError as exc:
      raise TokenExchangeError(f"Token endpoint request failed: {type(exc).__name__}", detail=str(exc)) from exc

    if not response.is_success:
      logger.error("Token exchange failed status=%s", response.status_code)
      raise TokenExchangeError(f"Token endpoint returned HTTP {response.status_code}", status_code=response.status_code, detail=response.text)

    try:
      payload = response.json()
    except ValueError as exc:
      raise TokenExchangeError("Token endpoint returned a non-JSON response.", status_code=response.status_code) from exc

    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not isinstance(access_token, str) or not access_token:
      raise TokenExchangeError("Token endpoint response is missing access_token.", status_code=response.status_code)

    declared = payload.get("expires_in")
    lifetime = float(declared) if isinstance(declared, int | float) and not isinstance(declared, bool) and declared > 0 else self._default_lifetime_seconds
    expires_at = issued_at + max(lifetime - self._expiry_margin_seconds, 0.0)
    logger.info("Access token refreshed; cached for %.0fs", expires_at - issued_at)
    return AccessToken(token=access_token, expires_at=expires_at)
