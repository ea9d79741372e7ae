from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, PostgresDsn

from .prefect_secrets import env_or_prefect_secret

load_dotenv()
class Settings(BaseSettings):
    # App Settings
    APP_NAME: str = "DeFi Radar Sync"
    DEBUG: bool = False

    # Database Settings
    # Keep this optional so imports don't fail in environments where the DB
    # url is only available at runtime (e.g. Prefect-managed execution).
    DATABASE_URL: PostgresDsn | None = Field(
        env_or_prefect_secret("DATABASE_URL", "database-url"),
        alias="DATABASE_URL",
    )

    # Cache Settings (no URL means caching is disabled)
    REDIS_URL: str | None = Field(
        env_or_prefect_secret("REDIS_URL", "redis-url"),
        alias="REDIS_URL",
    )

    # DeFi Llama (bulk provider)
    DEFILLAMA_API_URL: str = "https://api.llama.fi"
    DEFILLAMA_YIELDS_URL: str = "https://yields.llama.fi"
    DEFILLAMA_STABLECOINS_URL: str = "https://stablecoins.llama.fi"

    # CoinGecko (rate-limited provider)
    COINGECKO_API_URL: str = "https://api.coingecko.com/api/v3"
    COINGECKO_API_KEY: str | None = env_or_prefect_secret("COINGECKO_API_KEY", "coingecko-api-key")

    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Bulk client retry: wait initial_delay * backoff_factor ** attempt
    BULK_RETRY_MAX_RETRIES: int = 3
    BULK_RETRY_INITIAL_DELAY_SECONDS: float = 5.0
    BULK_RETRY_BACKOFF_FACTOR: float = 2.0

    # Rate-limited client; the demo plan allows ~30 calls/minute.
    CG_MIN_INTERVAL_SECONDS: float = 2.1
    CG_MAX_QUEUE_SIZE: int = 100
    CG_MAX_ATTEMPTS: int = 3
    CG_RESET_RETRY_DELAY_SECONDS: float = 1.0
    CG_DEFAULT_RETRY_AFTER_SECONDS: float = 60.0
    CG_BACKOFF_SAFETY_MARGIN_SECONDS: float = 1.0

    # Reconciliation
    SYNC_BATCH_SIZE: int = 500
    CHART_BATCH_SIZE: int = 100
    POOL_TOKEN_BATCH_SIZE: int = 1000
    COIN_INDEX_BATCH_SIZE: int = 100

    # Token -> coin resolution fan-out
    TOKEN_RESOLVE_BATCH_SIZE: int = 5
    TOKEN_RESOLVE_PAUSE_SECONDS: float = 0.5

    # Time-series retention
    CHART_RETENTION_DAYS: int = 7

    # Pools whose chart is refreshed at the end of a full pass
    TOP_POOL_MIN_TVL_USD: float = 1_000_000
    TOP_POOL_MIN_APY: float = 5.0
    TOP_POOL_LIMIT: int = 10

    # Config for Pydantic V2
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore" # Ignore extra env vars not defined here
    )

# Singleton instance to be imported across the app
settings = Settings()
