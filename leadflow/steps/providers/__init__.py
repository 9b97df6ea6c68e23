"""LLM provider adapters."""

from .base import LLMAPIError, LLMClient, LLMResponse
from .openai import OpenAIClient

__all__ = ["LLMAPIError", "LLMClient", "LLMResponse", "OpenAIClient"]
