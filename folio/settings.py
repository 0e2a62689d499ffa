import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Provider credentials
    tiingo_api_key: str = Field(default="", alias="TIINGO_API_KEY")
    finnhub_api_key: str = Field(default="", alias="FINNHUB_API_KEY")
    alphavantage_api_key: str = Field(default="", alias="ALPHAVANTAGE_API_KEY")
    # EDGAR requires a User-Agent naming the app and a contact address
    sec_user_agent: str = Field(
        default="FolioTracker admin@example.com", alias="SEC_USER_AGENT"
    )

    # Provider feature flags
    rss_news_enabled: bool = Field(default=True, alias="FEATURE_RSS_NEWS_ENABLED")

    # Provider priority / enable overrides
    provider_config_path: str = Field(
        default="config/providers.yaml", alias="PROVIDER_CONFIG_PATH"
    )

    # Timeouts (seconds)
    provider_timeout: float = Field(default=10.0, alias="PROVIDER_TIMEOUT")
    rss_request_timeout: float = Field(default=15.0, alias="RSS_REQUEST_TIMEOUT")
    orchestrator_timeout: float = Field(default=30.0, alias="ORCHESTRATOR_TIMEOUT")

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=3, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_failure_window: float = Field(default=60.0, alias="CIRCUIT_FAILURE_WINDOW")
    circuit_reset_timeout: float = Field(default=30.0, alias="CIRCUIT_RESET_TIMEOUT")

    # Concurrency
    provider_concurrency: int = Field(default=5, alias="PROVIDER_CONCURRENCY")
    merge_concurrency: int = Field(default=5, alias="MERGE_CONCURRENCY")

    # Cache
    cache_max_size: int = Field(default=5000, alias="CACHE_MAX_SIZE")

    # HTTP server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")


def load_settings() -> Settings:
    """Build settings from the process environment."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
