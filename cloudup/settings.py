"""
Cloudup settings - scheduling, retry and output defaults.

Values come from CLOUDUP_* environment variables or a .env file; explicit
arguments to CloudupCore and Executor take precedence over both.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).parent.parent


class CloudupSettings(BaseSettings):
    """Engine configuration.

    Precedence: environment variables, then the .env file, then defaults.
    """

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="CLOUDUP_",  # All Cloudup env vars must start with CLOUDUP_
    )

    # Scheduling
    max_concurrency: int = Field(
        default=10,
        ge=1,
        description="Number of tasks converged in parallel (env: CLOUDUP_MAX_CONCURRENCY)",
    )

    # Transient error handling
    max_attempts: int = Field(
        default=10,
        ge=1,
        description="Attempts per task before a transient error becomes fatal (env: CLOUDUP_MAX_ATTEMPTS)",
    )

    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Initial delay before re-queueing a task that asked to try again later (env: CLOUDUP_RETRY_BACKOFF_SECONDS)",
    )

    retry_max_backoff_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for the exponential retry delay (env: CLOUDUP_RETRY_MAX_BACKOFF_SECONDS)",
    )

    # Infrastructure-as-code output
    iac_output: str = Field(
        default="kubernetes.tf.json",
        description="File written by the render command (env: CLOUDUP_IAC_OUTPUT)",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR) (env: CLOUDUP_LOG_LEVEL)",
    )


_settings: CloudupSettings | None = None


def get_settings() -> CloudupSettings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = CloudupSettings()
    return _settings


def reload_settings() -> CloudupSettings:
    """Discard the cached settings and read them again."""
    global _settings
    _settings = CloudupSettings()
    return _settings
