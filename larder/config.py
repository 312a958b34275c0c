from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    JWT_ISS: str = "larder"
    TZ: str = "UTC"
    LOG_LEVEL: str = "INFO"
    # lots reaching zero through a movement are archived in the same write
    AUTO_ARCHIVE_EMPTY_LOTS: bool = True
    # extra attempts after an optimistic-lock conflict before giving up with 409
    CONFLICT_RETRIES: int = 2
    DASHBOARD_DEFAULT_DAYS: int = 30
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
