from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    APP_ENV: str = "development"
    CORS_ORIGINS: str = "*"

    DATABASE_URL: str = "sqlite:///./photobooth.db"

    # Redis Configuration (ledger global lock)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0
    LEDGER_LOCK_NAME: str = "ledger:global-lock"
    LEDGER_LOCK_TIMEOUT_SECONDS: int = 30

    # Durable storage
    AWS_REGION: str = "ap-southeast-1"
    AWS_S3_BUCKET: str = "photobooth-assets"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    DEFAULT_FOLDER_ID: Optional[str] = None

    # Ledger service the reconciler talks to
    LEDGER_BASE_URL: str = "http://localhost:8000/api/v1/ledger"
    LEDGER_TICK_RETRIES: int = 2
    LEDGER_TICK_RETRY_WAIT_SECONDS: float = 0.5
    LEDGER_REQUEST_RETRIES: int = 3
    LEDGER_REQUEST_RETRY_WAIT_SECONDS: float = 1.0

    # Generation provider (BytePlus ARK)
    PROVIDER_BASE_URL: str = "https://ark.ap-southeast.bytepluses.com/api/v3"
    PROVIDER_API_KEY: Optional[str] = None
    VIDEO_MODEL: str = "seedance-1-0-pro-fast-251015"
    VIDEO_DURATION_SECONDS: int = 5
    DEFAULT_VIDEO_PROMPT: str = "Cinematic movement"
    # Used when a row has no stored image URL; {photo_id} and {size} are filled in
    IMAGE_REF_TEMPLATE: str = "https://drive.google.com/thumbnail?id={photo_id}&sz={size}"

    # Reconciler
    MAX_CONCURRENT: int = 3
    UPLOADING_STALE_AFTER_SECONDS: int = 900
    TICK_ACTIVE_INTERVAL_SECONDS: float = 5.0
    TICK_IDLE_INTERVAL_SECONDS: float = 15.0
    TICK_ERROR_INTERVAL_SECONDS: float = 20.0

    HTTP_TIMEOUT_SECONDS: float = 10.0
    DOWNLOAD_TIMEOUT_SECONDS: float = 60.0

    class Config:
        env_file = ".env"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def provider_base_url(self) -> str:
        return self.PROVIDER_BASE_URL.rstrip("/")

settings = Settings()
