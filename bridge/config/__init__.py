"""Estimator bridge configuration.

This package contains:
- settings: Environment variables and configuration
- errors: Custom exceptions and error codes
"""

from config.settings import settings
from config.errors import EstimatorError, ValidationError, ErrorCode

__all__ = [
    "settings",
    "EstimatorError",
    "ValidationError",
    "ErrorCode",
]
