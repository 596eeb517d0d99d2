from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # --- NPI registry defaults ---
    NPI_BASE_URL: str = "https://npiregistry.cms.hhs.gov/api/"
    NPI_API_VERSION: str = "2.1"
    NPI_ENUMERATION_TYPE: str = "NPI-1"
    NPI_RESULT_LIMIT: int = 50

    # --- HTTP timeouts ---
    HTTP_CONNECT_TIMEOUT: float = 10.0
    HTTP_READ_TIMEOUT: float = 20.0
    HTTP_WRITE_TIMEOUT: float = 10.0
    HTTP_POOL_TIMEOUT: float = 5.0
    COLLABORATOR_TIMEOUT: float = 25.0

    # --- NLP collaborator (Gemini) ---
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # --- Google Places enrichment ---
    GOOGLE_PLACES_API_KEY: Optional[str] = None
    PLACES_BASE_URL: str = "https://maps.googleapis.com/maps/api/place/"
    ENRICHMENT_CONCURRENCY: int = 10

    # --- caches ---
    QUERY_CACHE_SIZE: int = 1000
    QUERY_CACHE_TTL: float = 24 * 60 * 60
    TAXONOMY_CACHE_SIZE: int = 500
    TAXONOMY_CACHE_TTL: float = 7 * 24 * 60 * 60

    # --- request bounds ---
    DEFAULT_RADIUS_METERS: int = 5000
    MAX_RADIUS_METERS: int = 50000
    DEFAULT_PAGE_SIZE: int = 15
    MIN_PAGE_SIZE: int = 5
    MAX_PAGE_SIZE: int = 50

    # --- ranking ---
    NAME_FILTER_MIN_SCORE: int = 60
    NAME_MATCH_SCORE: int = 70
    THRESHOLD_DEFAULT: int = 60
    THRESHOLD_WITH_NAME: int = 50
    THRESHOLD_WITHOUT_NAME: int = 40
    THRESHOLD_MULTI_SOURCE: int = 30
    SOURCE_BONUS: int = 10

    # --- strategy engine ---
    ACTIVE_UPDATE_YEARS: int = 5
    LAST_RESORT_CAP: int = 50

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
