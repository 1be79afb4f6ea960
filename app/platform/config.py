from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Storefront Scan"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = True

    # ── Celery / Redis ──────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"

    # Result backend also carries the scan_progress:{job_id} pub/sub channels
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    CELERY_TASK_SERIALIZER: str = "json"
    CELERY_RESULT_SERIALIZER: str = "json"
    CELERY_ACCEPT_CONTENT: str = "json"
    CELERY_TASK_TRACK_STARTED: bool = True
    CELERY_TASK_TIME_LIMIT: int = 180
    CELERY_RESULT_EXPIRES: int = 86400

    # ── OpenAI ──────────────────────────────────
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_MAX_OUTPUT_TOKENS: int = 3000
    OPENAI_TEMPERATURE: float = 0.3
    OPENAI_TIMEOUT_SECONDS: float = 35.0

    # ── Scan pipeline ───────────────────────────
    SCAN_BUDGET_SECONDS: float = 60.0
    SCAN_AI_RESERVE_SECONDS: float = 15.0
    SCAN_CONCURRENCY: int = 5
    SCAN_MAX_PAGES: int = 40
    SCAN_MAX_KEY_PATHS: int = 60
    SCAN_MAX_SITEMAP_PRODUCTS: int = 200
    SCAN_MAX_SUB_SITEMAPS: int = 5
    SCAN_MAX_DEEP_CRAWL: int = 6
    SCAN_PREFERRED_MODE: Literal["rendered", "plain"] = "rendered"
    SCAN_PUBLIC_CATALOG_ENABLED: bool = True
    SCAN_USER_AGENT: str = "Mozilla/5.0 (compatible; StorefrontScanBot/1.0)"

    # ── Fetching ────────────────────────────────
    CHROMEDRIVER_PATH: Optional[str] = None
    RENDER_TIMEOUT_SECONDS: float = 25.0
    RENDER_SETTLE_SECONDS: float = 1.5
    PLAIN_TIMEOUT_SECONDS: float = 15.0
    SITEMAP_TIMEOUT_SECONDS: float = 8.0

    # ── Competitor price lookup ─────────────────
    COMPETITOR_LOOKUP_ENABLED: bool = True
    COMPETITOR_SEARCH_URL: str = "https://duckduckgo.com/html/"
    COMPETITOR_SEARCH_TIMEOUT_SECONDS: float = 6.0

    # ── Logging ─────────────────────────────────
    LOG_DIR: str = "logs"
    LOG_FILE_NAME: str = "scan_pipeline.log"

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
