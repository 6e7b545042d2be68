"""Tests for configuration loading and validation."""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ado_metrics.config import load_config, load_config_from_env
from ado_metrics.errors import AuthenticationError, ConfigurationError


def test_load_config_applies_defaults():
    """Verify defaults for concurrency, timeout and cache settings."""
    config = load_config(organization=" org ", project="proj", repo_id="repo", pat="secret")

    assert config.organization == "org"
    assert config.max_concurrency == 6
    assert config.request_timeout_ms == 60_000
    assert config.cache_ttl_ms == 86_400_000
    assert config.cache_max_entries == 500
    assert config.exclude_users_regex is None
    assert config.exclude_users == ()


def test_load_config_missing_pat_raises_authentication_error(monkeypatch):
    monkeypatch.delenv("ADO_PAT", raising=False)

    with pytest.raises(AuthenticationError):
        load_config(organization="org", project="proj", repo_id="repo")


def test_load_config_falls_back_to_env_pat(monkeypatch):
    monkeypatch.setenv("ADO_PAT", "from-env")

    config = load_config(organization="org", project="proj", repo_id="repo")

    assert config.pat == "from-env"


@pytest.mark.parametrize("concurrency", [0, 33])
def test_load_config_rejects_out_of_range_concurrency(concurrency):
    with pytest.raises(ConfigurationError):
        load_config(organization="org", project="proj", repo_id="repo", pat="secret", max_concurrency=concurrency)


def test_load_config_rejects_missing_repository():
    with pytest.raises(ConfigurationError):
        load_config(organization="org", project="proj", repo_id="  ", pat="secret")


def test_load_config_rejects_invalid_exclusion_regex():
    with pytest.raises(ConfigurationError):
        load_config(organization="org", project="proj", repo_id="repo", pat="secret", exclude_users_regex="(")


def test_load_config_from_env_reads_all_settings(monkeypatch):
    """Verify every supported environment variable is honored."""
    env = {
        "ADO_ORG": "org",
        "ADO_PROJECT": "proj",
        "ADO_REPO_ID": "repo",
        "ADO_PAT": "secret",
        "APP_MAX_CONCURRENCY": "8",
        "APP_REQUEST_TIMEOUT_MS": "15000",
        "APP_CACHE_TTL_MS": "1000",
        "APP_CACHE_MAX_ENTRIES": "10",
        "EXCLUDE_USERS_REGEX": "^svc-",
        "EXCLUDE_USERS": "build@example.com, ,deploy@example.com",
    }
    for name, value in env.items():
        monkeypatch.setenv(name, value)

    with patch("ado_metrics.config.load_dotenv") as dotenv_mock:
        config = load_config_from_env()

    dotenv_mock.assert_called_once_with()
    assert config.max_concurrency == 8
    assert config.request_timeout_ms == 15_000
    assert config.cache_ttl_ms == 1_000
    assert config.cache_max_entries == 10
    assert config.exclude_users_regex == "^svc-"
    assert config.exclude_users == ("build@example.com", "deploy@example.com")


def test_load_config_from_env_rejects_non_integer(monkeypatch):
    monkeypatch.setenv("ADO_ORG", "org")
    monkeypatch.setenv("ADO_PROJECT", "proj")
    monkeypatch.setenv("ADO_REPO_ID", "repo")
    monkeypatch.setenv("ADO_PAT", "secret")
    monkeypatch.setenv("APP_REQUEST_TIMEOUT_MS", "fast")

    with patch("ado_metrics.config.load_dotenv"):
        with pytest.raises(ConfigurationError):
            load_config_from_env()
