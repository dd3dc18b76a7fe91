from typing import List, Optional

import httpx

from listingbot.logging_config import get_logger
from listingbot.services.llm.base import AIProvider, LLMResponse

logger = get_logger("llm.openai")

OPENAI_API_URL = "https://api.openai.com/v1"


class OpenAIError(Exception):
    pass


class OpenAIProvider(AIProvider):
    """Vision (chat completions) and Whisper transcription over plain HTTP."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        transcription_model: str = "whisper-1",
        timeout_seconds: float = 60.0,
        api_url: str = OPENAI_API_URL,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.transcription_model = transcription_model
        self.timeout_seconds = timeout_seconds
        self.api_url = api_url.rstrip("/")

    def _post(self, endpoint: str, operation: str, **request_kwargs) -> httpx.Response:
        """POST to an OpenAI endpoint; anything but 200 raises OpenAIError."""
        with httpx.Client(timeout=self.timeout_seconds) as client:
            response = client.post(
                f"{self.api_url}/{endpoint}",
                headers={"Authorization": f"Bearer {self.api_key}"},
                **request_kwargs,
            )
        logger.debug(f"OpenAI {operation} status: {response.status_code}")
        if response.status_code != 200:
            logger.error(f"OpenAI {operation} failed: {response.text}")
            raise OpenAIError(f"OpenAI {operation} error: {response.status_code} - {response.text}")
        return response

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        max_tokens: int = 500,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {"model": model, "messages": messages, "max_completion_tokens": max_tokens}
        data = self._post("chat/completions", "chat", json=payload).json()

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))

    def analyze_image(self, image_url: str, prompt: str) -> str:
        """Ask the vision model about the image at image_url."""
        content = [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": image_url}},
        ]
        analysis = self.generate([{"role": "user", "content": content}]).content.strip()
        if not analysis:
            raise OpenAIError("Vision model returned empty analysis")
        return analysis

    def transcribe_audio(
        self,
        *,
        audio_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        model: Optional[str] = None,
    ) -> str:
        if not audio_bytes:
            raise ValueError("audio_bytes is empty")

        upload = (filename or "audio", audio_bytes, mime_type or "application/octet-stream")
        form = {"model": model or self.transcription_model, "response_format": "text"}
        transcript = self._post("audio/transcriptions", "transcription", files={"file": upload}, data=form).text

        if not (transcript or "").strip():
            raise OpenAIError("OpenAI transcription returned empty text")
        return transcript.strip()
