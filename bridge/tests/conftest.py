"""Pytest configuration and shared fixtures for estimator bridge tests."""

import os
import sys
from datetime import datetime, timezone

import pytest


# ============================================================================
# Ensure local imports work (config/, models/, services/, validators/)
# ============================================================================
#
# The codebase uses absolute imports like `from models...` / `from services...`.
# This guarantees that `bridge/` is importable as the top-level module root.
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def fixed_now():
    """Deterministic clock for generated timestamps."""
    return datetime(2025, 3, 1, 15, 30, 0, 123000, tzinfo=timezone.utc)


@pytest.fixture
def reference_request():
    """Single heat pump estimate request (subtotal 3324, grand total 3556.68)."""
    from tests.fixtures.mock_catalog_data import reference_request as build

    return build()


@pytest.fixture
def reference_estimate(reference_request, fixed_now):
    """Priced reference estimate."""
    from services.estimate_engine import build_estimate

    return build_estimate(reference_request, now=fixed_now)


@pytest.fixture
def changeout_profile():
    """Profile with AC Pro and Day & Night 4 ton heat pumps."""
    from tests.fixtures.mock_catalog_data import changeout_profile as build

    return build()


@pytest.fixture
def ready_intake():
    """Complete intake selecting the AC Pro heat pump."""
    from tests.fixtures.mock_catalog_data import ready_intake as build

    return build()


@pytest.fixture
def store_path(tmp_path):
    """Path for a throwaway profile store file."""
    return str(tmp_path / "data" / "estimator.json")
