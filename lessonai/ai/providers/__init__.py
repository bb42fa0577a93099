"""Generation client implementations."""

from lessonai.ai.providers.base import GenerationClient
from lessonai.ai.providers.vertex_ai import VertexGenerationClient

__all__ = ["GenerationClient", "VertexGenerationClient"]
