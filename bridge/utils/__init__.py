"""Utility modules for the estimator bridge."""

from utils.estimate_logger import (
    log_estimate_summary,
    log_changeout_plan,
    log_estimate_error,
)

__all__ = [
    "log_estimate_summary",
    "log_changeout_plan",
    "log_estimate_error",
]
