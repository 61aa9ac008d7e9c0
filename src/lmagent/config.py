"""Configuration settings for the application."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = True
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Upstream servers, format: "name1|url1,name2|url2"
    LMSTUDIO_SERVERS: str | None = None

    # Completion client
    HEALTH_CHECK_TIMEOUT_MS: int = 5000
    MODELS_TIMEOUT_MS: int = 10000
    CHAT_TIMEOUT_MS: int = 120000
    MAX_RETRIES: int = Field(default=3, ge=1)  # total attempts, including the first
    RETRY_BASE_DELAY_MS: int = Field(default=1000, ge=0)

    # Generation defaults
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MAX_TOKENS: int = 2048
    DEFAULT_TOP_P: float = 0.95

    # Agent orchestrator
    AGENT_DEFAULT_TIMEOUT_MS: int = 120000
    AGENT_MAX_CONCURRENT_RUNS: int = 5
    AGENT_STRICT_MAX_TURNS: bool = False
    AGENT_AWAIT_CONFIRMATION: bool = False
    AGENT_CONTEXT_MAX_TOKENS: int | None = None

    # Tool executor
    TOOL_TIMEOUT_MS: int = 30000
    TOOL_MAX_CONCURRENT: int = 5

    # CLI client
    CLI_AGENT_ID: str = "preset-general"
    CLI_SERVER_ID: str = "local-main"
    CLI_MODEL: str | None = None

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
