"""
Runtime settings.

Values come from the environment (or a local `.env` file) so the same scenario
can be pointed at different deployments without code changes:

    BASE_URL=http://staging:8080 loadharness run order-create
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Harness-wide configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Target
    BASE_URL: str = Field("http://localhost:8080", description="Server under test")
    HTTP_TIMEOUT_SECONDS: float = Field(60.0, gt=0, description="Per-request timeout")

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None

    # Execution
    GRACEFUL_STOP_SECONDS: float = Field(30.0, ge=0)
    RAMP_TICK_SECONDS: float = Field(0.1, gt=0)
    METRICS_SAMPLE_INTERVAL_SECONDS: float = Field(1.0, gt=0)
    THINK_TIME_SCALE: float = Field(
        1.0, ge=0, description="Multiplier applied to VU.sleep(); 0 disables pauses"
    )

    # Output
    SUMMARY_EXPORT: Optional[str] = Field(
        None, description="Write the JSON run summary to this path"
    )


settings = Settings()
