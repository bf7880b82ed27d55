from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DEFAULT_TIMEZONE: str = "UTC"
    LOG_LEVEL: str = "INFO"

    SLOT_GRANULARITY_MINUTES: int = Field(default=30, gt=0)
    NEXT_SLOT_HORIZON_DAYS: int = Field(default=30, gt=0)

    MAX_SCHEDULE_EXCEPTIONS: int = Field(default=365, gt=0)
    ANALYTICS_MAX_RANGE_DAYS: int = Field(default=365, gt=0)

    # Defaults applied to facilities created without explicit booking rules
    DEFAULT_PLANNING_WINDOW_OPENS_DAYS: int = Field(default=7, ge=0)
    DEFAULT_PLANNING_WINDOW_CLOSES_DAYS: int = Field(default=1, ge=0)
    DEFAULT_MAX_HORSES_PER_RESERVATION: int = Field(default=1, gt=0)
    DEFAULT_MIN_SLOT_DURATION_MINUTES: int = Field(default=30, gt=0)


settings = Settings()
