"""Lightweight .env loader for local configuration."""

from __future__ import annotations

import os
from pathlib import Path


def default_env_path() -> Path:
  """Return the .env path at the repo root."""
  return Path(__file__).resolve().parents[2] / ".env"


def _strip_quotes(value: str) -> tuple[str, bool]:
  """Remove one layer of matching quotes and report whether the value was quoted."""
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    return value[1:-1], True
  return value, False


def parse_env_lines(lines: list[str]) -> dict[str, str]:
  """Parse dotenv-style lines into a mapping.

  Supports `export KEY=value`, quoted values (service-account JSON is usually
  single-quoted so its inner double quotes survive) and trailing `# comments`
  on unquoted values.
  """
  parsed: dict[str, str] = {}
  for raw_line in lines:
    line = raw_line.strip()
    if not line or line.startswith("#"):
      continue
    if line.startswith("export "):
      line = line[len("export ") :].lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
      continue
    value, quoted = _strip_quotes(value.strip())
    if not quoted and " #" in value:
      value = value.split(" #", 1)[0].rstrip()
    parsed[key] = value
  return parsed


def load_env_file(path: Path, *, override: bool = False) -> dict[str, str]:
  """Load a .env file into the process environment and return the keys that were applied."""
  if not path.is_file():
    return {}

  applied: dict[str, str] = {}
  for key, value in parse_env_lines(path.read_text(encoding="utf-8").splitlines()).items():
    if not override and key in os.environ:
      continue
    os.environ[key] = value
    applied[key] = value
  return applied
