"""
Root pytest configuration and shared fixtures.
"""

import os
from datetime import datetime

import pytest

from context_engine.core.token_budget import ModelProfile, TokenBudget, TokenBudgetTracker
from tests.factories import FIXED_NOW, FLAT_PROFILE


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def flat_profile() -> ModelProfile:
    return FLAT_PROFILE


@pytest.fixture
def flat_tracker() -> TokenBudgetTracker:
    """Tracker with the flat profile registered and selected."""
    tracker = TokenBudgetTracker()
    tracker.register_model(FLAT_PROFILE)
    tracker.set_current_model(FLAT_PROFILE.id)
    return tracker


@pytest.fixture
def budget_for():
    """Factory for flat-profile budgets with a fixed input ceiling."""

    def _budget(available: int) -> TokenBudget:
        return TokenBudget.for_input(available, profile=FLAT_PROFILE)

    return _budget


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every CONTEXT_ENGINE_* variable for the test."""
    for key in list(os.environ):
        if key.startswith("CONTEXT_ENGINE_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
