from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Values in .env are used only when the variable is not set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./messages.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Upstream JSON-RPC node and the event being explored
    RPC_URL: str = "https://docs-demo.quiknode.pro/"
    CONTRACT_ADDRESS: str = "0x41EA857C32c8Cb42EEFa00AF67862eCFf4eB795a"
    EVENT_TOPIC: str = "0xe5944a34d67c652e0ebf2304b48432aae0b55e40f79ba8a21a4d7054c169ffac"
    RPC_TIMEOUT_SECONDS: float = 20.0

    # Pagination / backfill tuning
    PAGE_SIZE: int = 10
    BLOCK_WINDOW: int = 10000
    MAX_BACKFILL_DEPTH: int = 10
    # Pause before every eth_getLogs call (provider rate limit)
    BACKFILL_DELAY_SECONDS: float = 1.0


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


settings = get_settings()
