# medintake/llm/__init__.py
from .client import LLMClient, OpenAILLMClient
from .retry import RetryingLLMClient

__all__ = ["LLMClient", "OpenAILLMClient", "RetryingLLMClient"]
