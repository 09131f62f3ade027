"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., POSTGRES_HOST env var → Settings.POSTGRES_HOST)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

Every module imports `settings` from here instead of hardcoding values.
Provider credentials default to empty strings: a provider without a key
reports itself as unavailable and the chain moves on to the next one.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ──────────────────────────────────────────────
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "answer_collector"
    POSTGRES_PASSWORD: str = "answer_collector"
    POSTGRES_DB: str = "answer_collector"

    # ── Redis ───────────────────────────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_KEY_PREFIX: str = "answercollector"

    # ── Worker ──────────────────────────────────────────────────
    WORKER_POOL_SIZE: int = 4          # runs executed concurrently per worker process
    WORKER_POLL_INTERVAL: float = 1.0  # BLPOP timeout, seconds

    # ── Scheduler ───────────────────────────────────────────────
    SCHEDULER_TICK_INTERVAL: float = 15.0  # seconds between due-job evaluations
    SCHEDULER_DUE_BATCH: int = 100         # jobs read per page during due evaluation
    SCHEDULER_DISPATCH_BATCH: int = 25     # max queued runs pushed per tick

    # ── Execution ───────────────────────────────────────────────
    DEFAULT_ENGINES: list[str] = [
        "chatgpt", "google_aio", "perplexity", "claude", "grok", "bing_copilot", "gemini",
    ]
    DEFAULT_ENGINE_CONCURRENCY: int = 3
    DEFAULT_PROVIDER_TIMEOUT: float = 60.0
    COLLECTOR_CONFIG_CACHE_TTL: int = 30   # seconds a config snapshot stays cached in Redis
    DEFAULT_LOCALE: str = "en-US"
    DEFAULT_COUNTRY: str = "US"

    # ── Retry ───────────────────────────────────────────────────
    RETRY_LOOKBACK_MINUTES: int = 60               # scheduled collection_retry jobs
    MANUAL_RETRY_LOOKBACK_MINUTES: int = 60 * 24   # operator "retry failures" button

    # ── Async result sweep ──────────────────────────────────────
    SWEEP_INTERVAL: float = 60.0
    SWEEP_BATCH_SIZE: int = 200
    ASYNC_RESULT_TIMEOUT_MINUTES: int = 60   # give up on a provider handle after this
    STUCK_RUNNING_TIMEOUT_MINUTES: int = 5   # running rows without a handle

    # ── Scoring collaborator ────────────────────────────────────
    SCORING_SERVICE_URL: str = "http://localhost:3001"
    SCORING_TIMEOUT: float = 600.0

    # ── Providers ───────────────────────────────────────────────
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    GROQ_API_KEY: str = ""
    GROQ_MODEL: str = "openai/gpt-oss-20b"
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_CLAUDE_MODEL: str = "anthropic/claude-sonnet-4"
    OPENROUTER_PERPLEXITY_MODEL: str = "perplexity/sonar"
    GOOGLE_GEMINI_API_KEY: str = ""
    GOOGLE_GEMINI_MODEL: str = "gemini-2.5-flash"
    SERPAPI_API_KEY: str = ""
    BRIGHTDATA_API_KEY: str = ""
    BRIGHTDATA_DATASETS: dict[str, str] = {  # engine -> dataset id
        "chatgpt": "gd_m7aof0k82r803d5bjm",
        "bing_copilot": "gd_m7di5jy6s9geokz8w",
        "grok": "gd_m8ve0u141icu75ae74",
        "gemini": "gd_mbz66arm2mf9cu856y",
    }

    # ── App ─────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        """Async connection string for FastAPI (uses asyncpg driver)."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def sync_database_url(self) -> str:
        """Sync connection string for worker threads (uses psycopg2 driver)."""
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    def redis_key(self, *parts: str) -> str:
        return ":".join([self.REDIS_KEY_PREFIX, *parts])

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton, import this everywhere
settings = Settings()
