from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Rollover engine
    rollover_batch_size: int = Field(500, alias="ROLLOVER_BATCH_SIZE", gt=0)
    rollover_existing_enrollment_threshold: float = Field(
        0.1, alias="ROLLOVER_EXISTING_ENROLLMENT_THRESHOLD", ge=0, le=1
    )
    rollover_timeout_seconds: Optional[float] = Field(300, alias="ROLLOVER_TIMEOUT_SECONDS")
    rollover_lock_ttl_seconds: int = Field(1800, alias="ROLLOVER_LOCK_TTL_SECONDS")

    db_retry_attempts: int = Field(3, alias="DB_RETRY_ATTEMPTS", ge=1)
    db_retry_wait_seconds: float = Field(0.2, alias="DB_RETRY_WAIT_SECONDS", ge=0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
