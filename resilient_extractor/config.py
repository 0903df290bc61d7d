from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Credentials (optional: a missing key disables that backend)
    tavily_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("SEARCH_PLUS_TAVILY_API_KEY", "TAVILY_API_KEY"),
    )
    jina_api_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "SEARCH_PLUS_JINAAI_API_KEY", "JINAAI_API_KEY", "JINA_API_KEY"
        ),
    )

    # 404 / archive policy
    search_plus_404_mode: str = Field(
        default="normal",
        validation_alias=AliasChoices("SEARCH_PLUS_404_MODE", "search_plus_404_mode"),
    )  # disabled | conservative | normal | aggressive

    # Endpoints
    tavily_extract_url: str = "https://api.tavily.com/extract"
    jina_reader_base_url: str = "https://r.jina.ai/"
    wayback_availability_url: str = "https://archive.org/wayback/available"
    health_check_url: str = "https://www.wikipedia.org/"

    # Timeouts (ms)
    primary_timeout_ms: int = 15000
    reader_timeout_ms: int = 10000
    health_check_timeout_ms: int = 5000
    health_cache_ttl_seconds: float = 60.0  # reuse one probe across calls and batches
    cache_service_timeout_ms: int = 8000

    # Escalation ladder
    cache_services: str = ""  # comma separated names, empty = all built-ins in priority order
    max_user_agent_retries: int = 2

    # Batch
    batch_concurrency: int = 3
    batch_delay_seconds: float = 1.0

    # Logging
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = ""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @property
    def cache_service_list(self) -> list[str]:
        return [name.strip() for name in self.cache_services.split(",") if name.strip()]


settings = Settings()
