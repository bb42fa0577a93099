"""Interface shared by generation clients."""

from __future__ import annotations

from typing import Any, Protocol

from lessonai.ai.backoff import RetryBudget


class GenerationClient(Protocol):
  """Send one prompt to a generative model and return its raw text."""

  async def generate(self, prompt: str, schema: dict[str, Any] | None, temperature: float, *, system: str | None = None, budget: RetryBudget | None = None) -> str:
    """Return the model's text; JSON text when ``schema`` is given."""
    ...
