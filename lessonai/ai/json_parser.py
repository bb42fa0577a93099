"""Lenient JSON parsing helpers for model outputs."""

from __future__ import annotations

import json
import re
from typing import Any

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def parse_json_with_fallback(raw: str) -> Any:
  """Parse JSON, recovering from prose wrappers, code fences and trailing commas."""
  # Valid JSON is returned without mutation.
  try:
    return json.loads(raw)
  except json.JSONDecodeError as exc:
    last_error = exc

  candidate = extract_object_slice(raw)
  if candidate is None:
    raise last_error

  try:
    return json.loads(candidate)
  except json.JSONDecodeError as exc:
    last_error = exc

  cleaned = strip_trailing_commas(candidate)
  if cleaned == candidate:
    raise last_error

  return json.loads(cleaned)


def extract_object_slice(raw: str) -> str | None:
  """Return the text between the first ``{`` and the last ``}`` (inclusive)."""
  start = raw.find("{")
  end = raw.rfind("}")
  if start == -1 or end <= start:
    return None
  return raw[start : end + 1]


def strip_trailing_commas(raw: str) -> str:
  """Remove commas that directly precede a closing bracket."""
  return _TRAILING_COMMA_RE.sub(r"\1", raw)
