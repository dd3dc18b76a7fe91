from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class AIProvider(ABC):
    """Abstract base class for vision and speech-to-text providers."""

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        max_tokens: int = 500,
    ) -> LLMResponse:
        """Generate response from a chat model."""
        pass

    @abstractmethod
    def analyze_image(self, image_url: str, prompt: str) -> str:
        """Describe an image reachable at image_url."""
        pass

    @abstractmethod
    def transcribe_audio(self, *, audio_bytes: bytes, filename: str, mime_type: Optional[str] = None) -> str:
        """Return the transcript of an audio clip."""
        pass
