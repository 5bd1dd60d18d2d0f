"""
LLM Provider — factory.
"""

from groundlint.config import settings
from groundlint.llm import LLMProvider


def get_provider(provider_name: str = "gemini") -> LLMProvider:
    """Factory — returns the configured LLM provider."""
    if provider_name == "gemini":
        from groundlint.llm.gemini import GeminiProvider
        return GeminiProvider(api_key=settings.GEMINI_API_KEY, model=settings.GEMINI_MODEL)
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")
