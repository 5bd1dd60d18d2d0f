"""
Groundlint Configuration

Central settings loaded from environment variables.
"""

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Immutable linter settings."""

    # --- Versioning ---
    ENGINE_VERSION: str = "1.0.0"
    API_VERSION: str = "1"

    # --- LLM Provider ---
    LLM_PROVIDER: str = os.getenv("GROUNDLINT_LLM_PROVIDER", "gemini")
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    LLM_TEMPERATURE: float = float(os.getenv("GROUNDLINT_TEMPERATURE", "0.2"))

    # --- Orchestration ---
    CONCURRENCY: int = int(os.getenv("GROUNDLINT_CONCURRENCY", "4"))

    # --- Grounding ---
    MIN_CONFIDENCE: int = int(os.getenv("GROUNDLINT_MIN_CONFIDENCE", "80"))

    # --- Scoring ---
    DEFAULT_SEVERITY: str = os.getenv("GROUNDLINT_DEFAULT_SEVERITY", "warning")

    # --- Chunking ---
    CHUNKING_ENABLED: bool = os.getenv("GROUNDLINT_CHUNKING", "true").lower() == "true"
    CHUNK_WORD_THRESHOLD: int = int(
        os.getenv("GROUNDLINT_CHUNK_WORD_THRESHOLD", "600")
    )
    CHUNK_SIZE: int = int(os.getenv("GROUNDLINT_CHUNK_SIZE", "500"))

    # --- Result cache ---
    CACHE_ENABLED: bool = os.getenv("GROUNDLINT_CACHE", "true").lower() == "true"
    CACHE_MAX_ENTRIES: int = int(os.getenv("GROUNDLINT_CACHE_MAX_ENTRIES", "500"))

    # --- Server ---
    HOST: str = os.getenv("GROUNDLINT_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("GROUNDLINT_PORT", "8000"))

    # --- CORS ---
    CORS_ORIGINS: str = os.getenv("GROUNDLINT_CORS_ORIGINS", "*")


settings = Settings()
