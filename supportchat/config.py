"""
Configuration module for the support chat relay.
Loads settings from environment variables or .env file.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root (parent of supportchat/ directory)
_project_root = Path(__file__).parent.parent
_env_path = _project_root / ".env"
load_dotenv(_env_path)


DEFAULT_SYSTEM_PROMPT = """You are a helpful customer support assistant. Your role is to:

1. Be polite, professional, and empathetic
2. Provide clear and concise responses
3. Help users resolve their issues efficiently
4. Ask clarifying questions when needed
5. Escalate complex issues when appropriate
6. Maintain a friendly and supportive tone

Always prioritize the user's needs and provide the best possible assistance."""


class Config:
    """Application configuration."""

    # Upstream completion provider (OpenAI-compatible, e.g. OpenRouter)
    UPSTREAM_API_KEY: str = os.getenv(
        "UPSTREAM_API_KEY",
        os.getenv("OPENROUTER_API_KEY", "")
    )
    UPSTREAM_BASE_URL: str = os.getenv("UPSTREAM_BASE_URL", "https://openrouter.ai/api/v1")
    APP_URL: str = os.getenv("APP_URL", "http://localhost:3000")
    APP_TITLE: str = os.getenv("APP_TITLE", "Support Chat")
    DEFAULT_MODEL: str = os.getenv("DEFAULT_MODEL", "meta-llama/llama-3.3-70b-instruct:free")

    # Completion defaults
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.7"))
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "1000"))

    # Timeouts (seconds). The stream timeout bounds the gap between two chunks.
    UPSTREAM_TIMEOUT: float = float(os.getenv("UPSTREAM_TIMEOUT", "60"))
    STREAM_IDLE_TIMEOUT: float = float(os.getenv("STREAM_IDLE_TIMEOUT", "120"))

    # Database settings
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./support_chat.db"))

    # API settings
    API_HOST: str = os.getenv("API_HOST", "127.0.0.1")
    API_PORT: int = int(os.getenv("API_PORT", "5000"))
    API_KEY: str = os.getenv("API_KEY", "")  # Empty means dev mode
    CORS_ORIGINS: list[str] = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
        ).split(",")
        if origin.strip()
    ]

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Conversation limits
    MAX_MESSAGES: int = int(os.getenv("MAX_MESSAGES", "100"))
    MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "10000"))
    MAX_TITLE_LENGTH: int = int(os.getenv("MAX_TITLE_LENGTH", "200"))

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        if not cls.UPSTREAM_BASE_URL.startswith(("http://", "https://")):
            raise ValueError(
                f"UPSTREAM_BASE_URL must be an http(s) URL. "
                f"Got: {cls.UPSTREAM_BASE_URL}"
            )
        if not 0.0 <= cls.LLM_TEMPERATURE <= 2.0:
            raise ValueError(f"LLM_TEMPERATURE must be between 0 and 2. Got: {cls.LLM_TEMPERATURE}")
        if cls.LLM_MAX_TOKENS < 1:
            raise ValueError(f"LLM_MAX_TOKENS must be positive. Got: {cls.LLM_MAX_TOKENS}")
        if cls.UPSTREAM_TIMEOUT <= 0 or cls.STREAM_IDLE_TIMEOUT <= 0:
            raise ValueError("UPSTREAM_TIMEOUT and STREAM_IDLE_TIMEOUT must be positive")
        if not cls.DEFAULT_MODEL:
            raise ValueError("DEFAULT_MODEL must be set")

    @classmethod
    def get_relay_config(cls) -> dict:
        """Get keyword arguments for constructing the relay client."""
        return {
            "base_url": cls.UPSTREAM_BASE_URL,
            "api_key": cls.UPSTREAM_API_KEY,
            "app_url": cls.APP_URL,
            "app_title": cls.APP_TITLE,
            "default_model": cls.DEFAULT_MODEL,
            "temperature": cls.LLM_TEMPERATURE,
            "max_tokens": cls.LLM_MAX_TOKENS,
            "timeout": cls.UPSTREAM_TIMEOUT,
            "stream_idle_timeout": cls.STREAM_IDLE_TIMEOUT,
        }


# Singleton config instance
config = Config()
