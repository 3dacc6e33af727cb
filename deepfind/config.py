from __future__ import annotations

import os
from dotenv import load_dotenv

from deepfind.rag.errors import ConfigurationError

load_dotenv()


def require_env(name: str) -> str:
    v = os.getenv(name)
    if not v:
        raise ConfigurationError(f"{name} is not set")
    return v


class Settings:
    # --- Search engine ---
    MEILI_URL: str = os.getenv("MEILI_URL", "http://localhost:7700")
    MEILI_API_KEY: str = os.getenv("MEILI_API_KEY", "")
    MEILI_TIMEOUT_S: float = float(os.getenv("MEILI_TIMEOUT_S", "30"))

    # --- Chunking ---
    CHUNK_SIZE_CHARS: int = int(os.getenv("CHUNK_SIZE_CHARS", "1000"))
    OVERLAP_CHARS: int = int(os.getenv("OVERLAP_CHARS", "200"))
    CHUNK_FLUSH_SIZE: int = int(os.getenv("CHUNK_FLUSH_SIZE", "64"))

    # --- Indexing ---
    INDEX_BATCH_SIZE: int = int(os.getenv("INDEX_BATCH_SIZE", "50"))
    INDEX_RETRIES: int = int(os.getenv("INDEX_RETRIES", "3"))
    INDEX_RETRY_BASE_S: float = float(os.getenv("INDEX_RETRY_BASE_S", "0.5"))
    INDEX_SUCCESS_PAUSE_S: float = float(os.getenv("INDEX_SUCCESS_PAUSE_S", "0.05"))
    INDEX_FAILURE_PAUSE_S: float = float(os.getenv("INDEX_FAILURE_PAUSE_S", "0.5"))
    HEALTH_CHECK_EVERY: int = int(os.getenv("HEALTH_CHECK_EVERY", "200"))
    HEALTH_RECOVERY_WAIT_S: float = float(os.getenv("HEALTH_RECOVERY_WAIT_S", "2.0"))

    # --- Retrieval ---
    RETRIEVAL_CAP: int = int(os.getenv("RETRIEVAL_CAP", "100"))
    INITIAL_SEARCH_LIMIT: int = int(os.getenv("INITIAL_SEARCH_LIMIT", "50"))
    PHRASE_SEARCH_LIMIT: int = int(os.getenv("PHRASE_SEARCH_LIMIT", "10"))
    MAX_PHRASE_WORDS: int = int(os.getenv("MAX_PHRASE_WORDS", "5"))

    # --- Context ---
    CONTEXT_TOKEN_BUDGET: int = int(os.getenv("CONTEXT_TOKEN_BUDGET", "4096"))

    # --- LLM generation ---
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.2"))
    LLM_MAX_OUTPUT_TOKENS: int = int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "600"))
    LLM_TIMEOUT_S: float = float(os.getenv("LLM_TIMEOUT_S", "30"))
    LLM_RETRIES: int = int(os.getenv("LLM_RETRIES", "2"))


def validate_settings(s: Settings) -> None:
    if s.CHUNK_SIZE_CHARS <= 0:
        raise ConfigurationError("CHUNK_SIZE_CHARS must be > 0")
    if s.OVERLAP_CHARS < 0:
        raise ConfigurationError("OVERLAP_CHARS must be >= 0")
    if s.OVERLAP_CHARS >= s.CHUNK_SIZE_CHARS:
        raise ConfigurationError("OVERLAP_CHARS must be < CHUNK_SIZE_CHARS")
    for name in (
        "CHUNK_FLUSH_SIZE",
        "INDEX_BATCH_SIZE",
        "HEALTH_CHECK_EVERY",
        "RETRIEVAL_CAP",
        "INITIAL_SEARCH_LIMIT",
        "PHRASE_SEARCH_LIMIT",
        "MAX_PHRASE_WORDS",
        "CONTEXT_TOKEN_BUDGET",
    ):
        if int(getattr(s, name)) <= 0:
            raise ConfigurationError(f"{name} must be > 0")
    if s.MEILI_TIMEOUT_S <= 0:
        raise ConfigurationError("MEILI_TIMEOUT_S must be > 0")


settings = Settings()
