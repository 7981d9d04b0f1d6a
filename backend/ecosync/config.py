from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "EcoSync"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Local durable store: "sqlite", "redis" or "memory"
    STORAGE_BACKEND: str = "sqlite"
    DATABASE_URL: str = "sqlite+aiosqlite:///./ecosync.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    STORAGE_KEY_PREFIX: str = "ecosync:"

    # Sync engine
    SYNC_MAX_RETRIES: int = 5
    SYNC_OPERATION_TIMEOUT_SECONDS: float = 30.0
    SYNC_INTERVAL_SECONDS: float = 60.0  # 0 disables periodic sync

    # Connectivity
    START_ONLINE: bool = True
    NETWORK_PROBE_URL: str = ""  # empty disables the HTTP probe
    NETWORK_PROBE_INTERVAL_SECONDS: float = 10.0
    NETWORK_PROBE_TIMEOUT_SECONDS: float = 5.0
    NETWORK_DEBOUNCE_SECONDS: float = 0.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


settings = Settings()
