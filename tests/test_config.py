import pytest
from pydantic import ValidationError

from gentask.core.config import OrchestratorConfig
from gentask.core.settings import GenTaskSettings


def test_defaults():
    config = OrchestratorConfig()
    assert config.poll_interval == 10.0
    assert config.max_retries == 3
    assert config.max_submit_attempts == 4
    assert config.poll_error_tolerance == 4


def test_poll_error_tolerance_override():
    config = OrchestratorConfig(max_retries=1, max_consecutive_poll_errors=10)
    assert config.max_submit_attempts == 2
    assert config.poll_error_tolerance == 10


@pytest.mark.parametrize(
    "fields",
    [
        {"poll_interval": 0},
        {"max_retries": -1},
        {"max_retries": 11},
        {"retry_delay": -0.5},
        {"unknown": 1},
    ],
)
def test_invalid_values_are_rejected(fields):
    with pytest.raises(ValidationError):
        OrchestratorConfig(**fields)


def test_config_is_immutable():
    config = OrchestratorConfig()
    with pytest.raises(ValidationError):
        config.poll_interval = 1


def test_from_app_settings(monkeypatch):
    monkeypatch.setenv("GENTASK_POLL_INTERVAL", "2.5")
    monkeypatch.setenv("GENTASK_MAX_RETRIES", "5")
    monkeypatch.setenv("GENTASK_RETRY_DELAY", "0")
    monkeypatch.setenv("GENTASK_STORAGE_PREFIX", "clips")
    monkeypatch.setenv("GENTASK_VERIFY_ARCHIVE_SIZE", "false")

    config = OrchestratorConfig.from_app_settings(GenTaskSettings(_env_file=None))

    assert config.poll_interval == 2.5
    assert config.max_retries == 5
    assert config.retry_delay == 0
    assert config.storage_prefix == "clips"
    assert config.verify_archive_size is False
    assert config.archive_max_attempts == 3


def test_settings_strip_trailing_slash(monkeypatch):
    monkeypatch.setenv("GENTASK_PROVIDER_URL", "https://provider.test/")
    monkeypatch.setenv("GENTASK_PROVIDER_API_KEY", "secret-value")

    settings = GenTaskSettings(_env_file=None)

    assert str(settings.GENTASK_PROVIDER_URL).rstrip("/") == "https://provider.test"
    assert settings.GENTASK_PROVIDER_API_KEY.get_secret_value() == "secret-value"
    assert "secret-value" not in repr(settings)
