"""
Configuration Management Module

Configures relay parameters via environment variables or .env file.
Settings are read-only once loaded; the conversion core never mutates them.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Relay Configuration Class

    All configuration items can be overridden by environment variables, with names matching fields (uppercase).
    Mapping/list fields are given as JSON in the environment.
    """

    # Application Config
    APP_NAME: str = "Claude Relay"
    DEBUG: bool = False

    # Upstream Config
    UPSTREAM_BASE_URL: str = "https://api.anthropic.com"
    UPSTREAM_API_KEY: str = ""
    # Request timeout (seconds)
    HTTP_TIMEOUT: int = 600

    # Claude Model Defaults
    # Default max_tokens per model prefix; the "default" key applies when no prefix matches
    CLAUDE_DEFAULT_MAX_TOKENS: dict[str, int] = {"default": 8192}
    # "-thinking" model suffix adapter
    THINKING_ADAPTER_ENABLED: bool = True
    # Thinking budget as a fraction of max_tokens
    THINKING_ADAPTER_BUDGET_TOKENS_PERCENTAGE: float = 0.8
    # Models that keep the "-thinking" suffix when forwarded upstream
    PRESERVE_THINKING_SUFFIX_MODELS: list[str] = []
    # Extra upstream headers per model name (applied after the header preset)
    CLAUDE_MODEL_HEADERS: dict[str, dict[str, str]] = {}

    # Request Log Config
    REQUEST_LOG_ENABLED: bool = False
    REQUEST_LOG_DIR: str = "./request_logs"
    REQUEST_LOG_PREFIX: str = "relay_logs"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    def default_max_tokens(self, model: str) -> int:
        """
        Get default max_tokens for a model

        The longest matching prefix wins, falling back to the "default" entry.

        Args:
            model: Requested model name

        Returns:
            int: Default max_tokens
        """
        best_prefix = ""
        value = self.CLAUDE_DEFAULT_MAX_TOKENS.get("default", 8192)
        for prefix, tokens in self.CLAUDE_DEFAULT_MAX_TOKENS.items():
            if prefix == "default":
                continue
            if model.startswith(prefix) and len(prefix) > len(best_prefix):
                best_prefix = prefix
                value = tokens
        return value

    def preserve_thinking_suffix(self, model: str) -> bool:
        """Whether the "-thinking" suffix is kept on the upstream model name"""
        return model in self.PRESERVE_THINKING_SUFFIX_MODELS

    def model_headers(self, model: str) -> dict[str, str]:
        """Extra upstream headers configured for a model"""
        return dict(self.CLAUDE_MODEL_HEADERS.get(model, {}))


@lru_cache()
def get_settings() -> Settings:
    """
    Get relay configuration (Singleton)

    Uses lru_cache to ensure configuration is loaded only once.

    Returns:
        Settings: Relay configuration instance
    """
    return Settings()
