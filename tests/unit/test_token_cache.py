from __future__ import annotations

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from lessonai.ai.credentials import CredentialSigner, ServiceCredential
from lessonai.ai.errors import TokenExchangeError
from lessonai.ai.token_cache import JWT_BEARER_GRANT, TokenCache


class FakeClock:
  def __init__(self, now: float) -> None:
    self.now = now

  def __call__(self) -> float:
    return self.now


def _token_transport(requests: list[httpx.Request], *, status_code: int = 200, expires_in: int = 3600) -> httpx.MockTransport:
  async def handler(request: httpx.Request) -> httpx.Response:
    requests.append(request)
    # Yield so concurrent callers pile up behind the refresh lock.
    await asyncio.sleep(0)
    if status_code != 200:
      return httpx.Response(status_code, json={"error": "invalid_grant"})
    return httpx.Response(200, json={"access_token": f"token-{len(requests)}", "expires_in": expires_in, "token_type": "Bearer"})

  return httpx.MockTransport(handler)


@pytest.mark.anyio
async def test_concurrent_cold_callers_share_one_exchange(service_account_json) -> None:
  """Ensure a burst of callers on a cold cache performs exactly one token exchange."""
  requests: list[httpx.Request] = []
  signer = CredentialSigner(ServiceCredential.from_json(service_account_json))
  async with httpx.AsyncClient(transport=_token_transport(requests)) as http_client:
    cache = TokenCache(signer, http_client=http_client, clock=FakeClock(1_000.0))
    tokens = await asyncio.gather(*(cache.get_access_token() for _ in range(10)))

  assert set(tokens) == {"token-1"}
  assert cache.exchange_count == 1
  assert len(requests) == 1
  form = parse_qs(requests[0].content.decode("ascii"))
  assert form["grant_type"] == [JWT_BEARER_GRANT]
  assert form["assertion"][0].count(".") == 2
  assert str(requests[0].url) == "https://oauth2.example.test/token"


@pytest.mark.anyio
async def test_token_is_reused_until_refresh_threshold(service_account_json) -> None:
  """A token is cached for its lifetime minus five minutes and served while more than a minute remains."""
  requests: list[httpx.Request] = []
  clock = FakeClock(1_000.0)
  signer = CredentialSigner(ServiceCredential.from_json(service_account_json))
  async with httpx.AsyncClient(transport=_token_transport(requests)) as http_client:
    cache = TokenCache(signer, http_client=http_client, clock=clock)
    assert await cache.get_access_token() == "token-1"

    # Cached until 1000 + 3600 - 300 = 4300.
    clock.now = 4_200.0
    assert await cache.get_access_token() == "token-1"

    clock.now = 4_250.0
    assert await cache.get_access_token() == "token-2"

  assert cache.exchange_count == 2


@pytest.mark.anyio
async def test_invalidate_forces_a_fresh_exchange(service_account_json) -> None:
  requests: list[httpx.Request] = []
  signer = CredentialSigner(ServiceCredential.from_json(service_account_json))
  async with httpx.AsyncClient(transport=_token_transport(requests)) as http_client:
    cache = TokenCache(signer, http_client=http_client, clock=FakeClock(1_000.0))
    await cache.get_access_token()
    cache.invalidate()
    assert await cache.get_access_token() == "token-2"


@pytest.mark.anyio
async def test_rejected_assertion_raises_token_exchange_error(service_account_json) -> None:
  requests: list[httpx.Request] = []
  signer = CredentialSigner(ServiceCredential.from_json(service_account_json))
  async with httpx.AsyncClient(transport=_token_transport(requests, status_code=400)) as http_client:
    cache = TokenCache(signer, http_client=http_client, clock=FakeClock(1_000.0))
    with pytest.raises(TokenExchangeError) as exc_info:
      await cache.get_access_token()

  assert exc_info.value.status_code == 400
  assert "invalid_grant" in (exc_info.value.detail or "")
