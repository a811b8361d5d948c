from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    PROJECT_NAME: str = "tokensync"
    DATABASE_URL: str
    DATABASE_ECHO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Event source (bitquery)
    BITQUERY_URL: str = "https://graphql.bitquery.io/"
    BITQUERY_API_KEY: str = ""
    BITQUERY_PAGE_LIMIT: int = 2500
    BITQUERY_MAX_PAGES: int = 1_000_000
    BITQUERY_TIMEOUT_BETWEEN_CALLS: float = 10.0

    HTTP_TIMEOUT: float = 60.0

    # Solana RPC
    SOLANA_PRIMARY_RPC_URL: str = "https://api.mainnet-beta.solana.com"
    SOLANA_FALLBACK_RPC_URL: str = "https://solana-api.projectserum.com"
    SOLANA_TX_CHUNK_SIZE: int = 50
    SOLANA_TIMEOUT_BETWEEN_CHUNKS: float = 1.0
    SOLANA_BALANCE_RETRY_LIMIT: int = 2

    # EVM RPC
    ETHEREUM_RPC_URL: str = "https://cloudflare-eth.com"
    EVM_BALANCE_CONCURRENCY: int = 10
    EVM_RECEIPT_CHUNK_SIZE: int = 20
    EVM_TIMEOUT_BETWEEN_CALLS: float = 1.0
    EVM_LOG_BLOCK_SPAN: int = 2000

    # Storage
    INSERT_CHUNK_SIZE: int = 10000

    # Sync behaviour
    BALANCE_HISTORY_START_DATE: str = "2022-01-01"
    SYNC_LAG_HOURS: int = 48
    STRICT_SCHEMA: bool = False
    SYNC_ON_STARTUP: bool = False

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

@lru_cache()
def get_settings():
    return Settings()
