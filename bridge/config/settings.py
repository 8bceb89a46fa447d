"""Estimator bridge configuration settings.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file for local overrides (store path, Housecall endpoint templates, etc.)
load_dotenv()


def _get_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back on bad input."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    # Profile store
    estimator_store_path: str = field(
        default_factory=lambda: os.getenv("ESTIMATOR_STORE_PATH", os.path.join("data", "estimator.json"))
    )

    # Housecall Pro endpoint templates
    housecall_create_estimate_path: str = field(
        default_factory=lambda: os.getenv("HOUSECALL_PRO_CREATE_ESTIMATE_PATH", "/v1/estimates")
    )
    housecall_add_to_job_path: str = field(
        default_factory=lambda: os.getenv("HOUSECALL_PRO_ADD_TO_JOB_ESTIMATE_PATH", "/v1/jobs/{job_id}/estimates")
    )
    housecall_update_estimate_path: str = field(
        default_factory=lambda: os.getenv("HOUSECALL_PRO_UPDATE_ESTIMATE_PATH", "/v1/estimates/{estimate_id}")
    )
    housecall_add_option_note_path: str = field(
        default_factory=lambda: os.getenv(
            "HOUSECALL_PRO_ADD_OPTION_NOTE_PATH",
            "/v1/estimates/{estimate_id}/options/{estimate_option_id}/notes",
        )
    )

    # Changeout planner
    changeout_default_limit: int = field(default_factory=lambda: _get_int("CHANGEOUT_DEFAULT_LIMIT", 6))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def validate(self) -> None:
        """Validate settings.

        Raises:
            ValueError: If a setting is unusable.
        """
        if not self.estimator_store_path.strip():
            raise ValueError("ESTIMATOR_STORE_PATH cannot be empty")
        if not 1 <= self.changeout_default_limit <= 20:
            raise ValueError("CHANGEOUT_DEFAULT_LIMIT must be between 1 and 20")


# Singleton settings instance
settings = Settings()
