from listingbot.services.llm.base import AIProvider, LLMResponse
from listingbot.services.llm.openai_provider import OpenAIProvider

__all__ = ["AIProvider", "LLMResponse", "OpenAIProvider"]
