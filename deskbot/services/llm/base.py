from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class LLMError(RuntimeError):
    pass


class LLMProvider(ABC):
    """Chat-completion style text generator."""

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 400,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Return the assistant message for ``messages``. Raises LLMError on API errors."""
