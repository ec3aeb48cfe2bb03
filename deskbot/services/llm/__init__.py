from deskbot.services.llm.base import LLMError, LLMProvider, LLMResponse
from deskbot.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]
