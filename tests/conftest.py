"""Pytest configuration and fixtures."""

import os

import pytest

# Settings are read when loggers are first configured during collection
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ["CONTEXT_ENGINE_ENV"] = "test"


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["CONTEXT_ENGINE_ENV"] = "test"
    os.environ.pop("ANTHROPIC_API_KEY", None)
