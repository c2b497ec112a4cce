from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    APP_NAME: str = "scrapegate"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database (SQLite by default, Postgres via DATABASE_URL)
    DATABASE_URL: str = "sqlite+aiosqlite:///./scrapegate.db"
    DB_AUTO_CREATE: bool = True
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Browser Pool
    BROWSER_HEADLESS: bool = True
    BROWSER_MAX_PAGES: int = 3  # concurrent pages on the shared browser
    BROWSER_ACQUIRE_TIMEOUT: float = 30.0  # seconds to wait for a page slot

    # Scraping defaults
    DEFAULT_TIMEOUT: int = 30000  # ms
    DEFAULT_RETRIES: int = 2
    DEFAULT_RETRY_DELAY: int = 1000  # ms, multiplied by the attempt number
    DEFAULT_USER_AGENT: str = "SynthralOS/1.0 (Web Scraper)"
    MAX_CONCURRENT_SCRAPES: int = 5
    SCRAPE_API_TIMEOUT: int = 90  # Max seconds for a single scrape API call

    # Engine router
    PROBE_TIMEOUT_MS: int = 5000
    PROBE_MAX_REDIRECTS: int = 5
    HEURISTIC_CACHE_ENABLED: bool = True
    HEURISTIC_CACHE_TTL_SECONDS: int = 3600
    ENGINE_ON_PROBE_FAILURE: str = "lightweight"  # or "browser"

    # Proxy pool
    PROXY_CANDIDATE_LIMIT: int = 100
    PROXY_SCORE_WINDOW: int = 100  # most recent usage events used for scoring
    PROXY_DEFAULT_SCORE: int = 50
    PROXY_VALIDATION_URL: str = "https://httpbin.org/ip"
    PROXY_VALIDATION_TIMEOUT: int = 10000  # ms

    # Side-effect dispatcher
    EVENT_QUEUE_SIZE: int = 1000
    EVENT_WORKERS: int = 2
    EVENT_DRAIN_TIMEOUT: float = 5.0
    SELECTOR_OUTCOME_KEY: str = "scraper:selector_outcomes"
    SELECTOR_OUTCOME_MAX: int = 10000

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
