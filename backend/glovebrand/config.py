import json
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly (e.g., Playwright, boto3).
_backend_root = Path(__file__).resolve().parents[1]
_project_root = _backend_root.parent
load_dotenv(_project_root / ".env", override=False)
load_dotenv(_backend_root / ".env", override=True)


def _coerce_json(value: str):
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"

    DATABASE_URL: str = "sqlite:///./glovebrand.db"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    TEMPORAL_NAMESPACE: str = "default"
    TEMPORAL_TASK_QUEUE: str = "glove-branding"
    TEMPORAL_ADDRESS: str = "localhost:7233"
    WORKER_ACTIVITY_THREADS: int = 16

    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    # Job queue (at-least-once, dead-letter after MAX_DELIVERY_COUNT receives).
    JOB_QUEUE_NAME: str = "glovejobs"
    JOB_QUEUE_ENABLED: bool = True
    JOB_QUEUE_MAX_DELIVERY_COUNT: int = 5
    JOB_QUEUE_VISIBILITY_TIMEOUT_SECONDS: int = 300
    JOB_QUEUE_POLL_INTERVAL_SECONDS: float = 2.0
    JOB_QUEUE_BATCH_SIZE: int = 10

    # Reuse a completed job for the same normalized URL within this window. 0 disables.
    JOB_CACHE_TTL_MINUTES: int = 60

    # Artifact storage: "s3" for S3-compatible object storage, "local" for a filesystem directory.
    ARTIFACT_STORAGE_BACKEND: str = "local"
    ARTIFACT_LOCAL_DIR: str = "./local-output"
    ARTIFACT_STORAGE_BUCKET: str | None = None
    ARTIFACT_STORAGE_ENDPOINT: str | None = None
    ARTIFACT_STORAGE_REGION: str = "us-east-1"
    ARTIFACT_STORAGE_ACCESS_KEY: str | None = None
    ARTIFACT_STORAGE_SECRET_KEY: str | None = None
    ARTIFACT_STORAGE_PREFIX: str = ""
    ARTIFACT_STORAGE_PUBLIC_BASE_URL: str | None = None
    ARTIFACT_STORAGE_USE_SSL: bool = True
    ARTIFACT_STORAGE_FORCE_PATH_STYLE: bool = True

    FETCH_USER_AGENT: str = "GloveDesignBot/1.0 (+https://github.com/berginj/GloveDesign)"
    FETCH_TIMEOUT_SECONDS: float = 10.0
    FETCH_MAX_REDIRECTS: int = 3
    FETCH_RETRIES: int = 1
    FETCH_RETRY_BACKOFF_SECONDS: float = 0.2
    FETCH_MAX_BYTES: int = 5 * 1024 * 1024

    CRAWL_MAX_PAGES: int = 3
    CRAWL_MAX_IMAGES: int = 30
    CRAWL_MAX_BYTES: int = 25 * 1024 * 1024
    CRAWL_MAX_PAGE_BYTES: int = 2 * 1024 * 1024
    CRAWL_MAX_ASSET_BYTES: int = 5 * 1024 * 1024
    CRAWL_MAX_CSS_FILES: int = 4
    CRAWL_REQUEST_DELAY_SECONDS: float = 0.15
    CRAWL_WALL_CLOCK_SECONDS: float = 120.0

    WIZARD_URL: str = "https://bc2gloves.com/cart"
    WIZARD_HEADLESS: bool = True
    WIZARD_NAVIGATION_TIMEOUT_MS: int = 45000
    WIZARD_MIN_MAPPING_CONFIDENCE: float = 0.55

    SWEEPER_ENABLED: bool = True
    SWEEPER_CRON: str = "*/5 * * * *"
    SWEEPER_RETRY_MINUTES: int = 5
    SWEEPER_FAIL_MINUTES: int = 20
    SWEEPER_MAX_RETRIES: int = 2
    SWEEPER_LIMIT: int = 25

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    model_config = SettingsConfigDict(env_file=".env", env_json_loads=_coerce_json, extra="ignore")


settings = Settings()
