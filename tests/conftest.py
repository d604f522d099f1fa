"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest

from src.config import Settings, get_settings
from src.credentials.vault import CredentialVault

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit real services (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so tests that forget mock_settings fail locally, not just in CI.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    Tests that use mock_settings bypass Settings() entirely, so this is transparent.
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            # LLM (empty key = no LLM configured)
            "llm_provider": "openai",
            "openai_api_key": "",
            "openai_model": "gpt-4o-mini",
            "openai_base_url": "",
            "anthropic_api_key": "",
            "anthropic_model": "claude-3-5-haiku-latest",
            "llm_temperature": 0.7,
            "llm_timeout_seconds": 5.0,
            "llm_cost_per_1k_tokens": 0.000375,
            # Vault
            "encryption_key": TEST_ENCRYPTION_KEY,
            # GitHub
            "github_api_url": "https://github.test",
            "github_app_id": "",
            "github_app_private_key": "",
            "github_timeout_seconds": 5.0,
            "github_max_concurrent_repos": 3,
            # Storage
            "standup_db_path": "",
            # Standup defaults
            "activity_lookback_days": 1,
            "default_tone": "professional",
            "default_length": "medium",
            # Mode / auth
            "app_mode": "production",
            "jwt_secret": "test-jwt-secret",
            # Schedule
            "standup_schedule_cron": "",
        },
    )()
    with (
        patch("src.config.get_settings", return_value=fake_settings),
        patch("src.db.get_settings", return_value=fake_settings),
        patch("src.activity.aggregator.get_settings", return_value=fake_settings),
        patch("src.orchestrator.get_settings", return_value=fake_settings),
        patch("src.scheduler.get_settings", return_value=fake_settings),
        patch("src.cli.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault.from_hex(TEST_ENCRYPTION_KEY)
