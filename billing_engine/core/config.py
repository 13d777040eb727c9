from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "billing-engine"
    DEBUG: bool = False
    APP_DATABASE_DSN: str = "sqlite:////tmp/billing.db"
    REDIS_URL: str = "redis://localhost:6379"
    LOG_LEVEL: str = "INFO"

    # Payment retries
    MAX_PAYMENT_RETRIES: int = Field(default=3, ge=1)
    RETRY_DELAY_HOURS: int = Field(default=24, ge=0)

    # Gateway
    PAYMENT_GATEWAY: str = "simulated"
    SIMULATED_GATEWAY_SUCCESS_RATE: float = Field(default=0.9, ge=0.0, le=1.0)


settings = Settings()
