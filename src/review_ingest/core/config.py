"""Application configuration using Pydantic Settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "Review Ingest"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "./logs"

    # API
    API_V1_PREFIX: str = "/api/v1"
    API_KEY_NAME: str = "X-API-Key"
    API_KEY_SECRET: str = "changeme"
    CORS_ORIGINS: List[str] = ["*"]

    # Storage
    STORAGE_DIR: str = "./storage"
    JOBS_DB_PATH: str = "./storage/bulk_jobs.db"
    REVIEWS_DB_PATH: str = "./storage/reviews.db"

    # IGDB (Twitch client credentials)
    IGDB_CLIENT_ID: str = ""
    IGDB_CLIENT_SECRET: str = ""
    IGDB_BASE_URL: str = "https://api.igdb.com/v4"
    IGDB_TOKEN_URL: str = "https://id.twitch.tv/oauth2/token"
    IGDB_PAGE_SIZE: int = 500  # IGDB hard limit per request
    IGDB_REQUEST_DELAY_MS: int = 1000

    # TMDB
    TMDB_API_KEY: str = ""
    TMDB_BASE_URL: str = "https://api.themoviedb.org/3"
    TMDB_LANGUAGE: str = "de-DE"
    TMDB_MAX_PAGES: int = 500
    TMDB_MIN_VOTE_COUNT: int = 50
    TMDB_REQUEST_DELAY_MS: int = 250

    CATALOG_HTTP_TIMEOUT: float = 30.0
    CATALOG_RATE_LIMIT_WAIT_MS: int = 10000

    # LLM (OpenAI-compatible endpoint)
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: str = ""
    LLM_MODEL_NAME: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 4000
    LLM_REVIEW_LANGUAGE: str = "German"

    # Pipeline defaults (overridable per job)
    DEFAULT_BATCH_SIZE: int = 5
    DEFAULT_DELAY_BETWEEN_BATCHES_MS: int = 2000
    DEFAULT_DELAY_BETWEEN_ITEMS_MS: int = 2000
    DEFAULT_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_MS: int = 2000
    RETRY_MAX_DELAY_MS: int = 60000

    # Jobs stuck in "processing" longer than this are failed by the reaper
    STALE_JOB_MINUTES: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
