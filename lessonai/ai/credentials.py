"""Service-account credential loading and RS256 assertion signing."""

from __future__ import annotations

import base64
import binascii
import json
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from lessonai.ai.errors import ConfigurationError
from lessonai.config import DEFAULT_TOKEN_URI

JWT_HEADER: Final[dict[str, str]] = {"alg": "RS256", "typ": "JWT"}
CLOUD_PLATFORM_SCOPE: Final[str] = "https://www.googleapis.com/auth/cloud-platform"
ASSERTION_LIFETIME_SECONDS: Final[int] = 3600


def b64url_encode(data: bytes) -> str:
  """Encode bytes as unpadded base64url."""
  return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
  """Decode an unpadded base64url segment."""
  padded = segment + "=" * (-len(segment) % 4)
  try:
    return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
  except (binascii.Error, UnicodeEncodeError) as exc:
    raise ValueError("Segment is not valid base64url.") from exc


def compact_json(value: Mapping[str, Any]) -> bytes:
  """Serialize a mapping the way JWT segments expect (no whitespace)."""
  return json.dumps(dict(value), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_segment(segment: str) -> dict[str, Any]:
  """Decode a JWT header/claims segment back into a mapping."""
  decoded = json.loads(b64url_decode(segment))
  if not isinstance(decoded, dict):
    raise ValueError("Segment does not contain a JSON object.")
  return decoded


def load_private_key(pem: str) -> rsa.RSAPrivateKey:
  """Parse a PKCS#8 PEM private key.

  Keys copied out of service-account JSON into env files frequently carry
  literal ``\\n`` sequences instead of newlines, so those are normalized first.
  """
  normalized = pem.replace("\\n", "\n").strip()
  try:
    key = serialization.load_pem_private_key(normalized.encode("utf-8"), password=None)
  except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
    raise ConfigurationError("Service account private key is not a valid PEM-encoded key.") from exc

  if not isinstance(key, rsa.RSAPrivateKey):
    raise ConfigurationError("Service account private key must be an RSA key.")
  return key


@dataclass(frozen=True)
class ServiceCredential:
  """Issuer identity, signing key and token endpoint, loaded once at startup."""

  client_email: str
  private_key: rsa.RSAPrivateKey = field(repr=False, compare=False)
  token_uri: str = DEFAULT_TOKEN_URI

  @classmethod
  def from_json(cls, raw: str) -> ServiceCredential:
    """Build a credential from a Google service-account JSON document."""
    try:
      payload = json.loads(raw)
    except json.JSONDecodeError as exc:
      raise ConfigurationError("GCP_SERVICE_ACCOUNT_JSON is not valid JSON.") from exc

    if not isinstance(payload, dict):
      raise ConfigurationError("GCP_SERVICE_ACCOUNT_JSON must be a JSON object.")

    client_email = payload.get("client_email")
    private_key = payload.get("private_key")
    if not isinstance(client_email, str) or not client_email.strip():
      raise ConfigurationError("GCP_SERVICE_ACCOUNT_JSON is missing client_email.")
    if not isinstance(private_key, str) or not private_key.strip():
      raise ConfigurationError("GCP_SERVICE_ACCOUNT_JSON is missing private_key.")

    token_uri = payload.get("token_uri")
    if not isinstance(token_uri, str) or not token_uri.strip():
      token_uri = DEFAULT_TOKEN_URI

    return cls(client_email=client_email.strip(), private_key=load_private_key(private_key), token_uri=token_uri.strip())


class CredentialSigner:
  """Build and sign short-lived assertions for the jwt-bearer grant."""

  def __init__(self, credential: ServiceCredential, *, scope: str = CLOUD_PLATFORM_SCOPE, lifetime_seconds: int = ASSERTION_LIFETIME_SECONDS) -> None:
    self._credential = credential
    self._scope = scope
    self._lifetime_seconds = lifetime_seconds

  @property
  def token_uri(self) -> str:
    return self._credential.token_uri

  def build_claims(self, now: float | None = None) -> dict[str, Any]:
    """Return the claim set for an assertion issued at ``now``."""
    issued_at = int(time.time() if now is None else now)
    return {"iss": self._credential.client_email, "scope": self._scope, "aud": self._credential.token_uri, "iat": issued_at, "exp": issued_at + self._lifetime_seconds}

  def sign(self, claims: Mapping[str, Any]) -> str:
    """Return ``base64url(header).base64url(claims).base64url(signature)``."""
    signing_input = f"{b64url_encode(compact_json(JWT_HEADER))}.{b64url_encode(compact_json(claims))}"
    try:
      signature = self._credential.private_key.sign(signing_input.encode("ascii"), padding.PKCS1v15(), hashes.SHA256())
    except (ValueError, TypeError) as exc:
      raise ConfigurationError("Failed to sign the service account assertion.") from exc
    return f"{signing_input}.{b64url_encode(signature)}"

  def create_assertion(self, now: float | None = None) -> str:
    """Build and sign a fresh assertion."""
    return self.sign(self.build_claims(now))
