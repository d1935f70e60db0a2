import pytest

from disputebot.config import PROMPTS_DIR, load_config, validate_required_env
from disputebot.exceptions import ConfigurationError

MANAGED_VARS = (
    "OPENAI_API_KEY", "TELEGRAM_TOKEN", "PORT", "SESSION_IDLE_TIMEOUT_S", "STT_ENABLE",
    "INVOKE_MAX_RETRIES", "PROMPT_TEMPLATE_DIR", "PROMPT_TEMPLATE_VERSION", "PROMPT_FILE",
    "LOG_JSONL_PATH", "THIRD_PARTY_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in MANAGED_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = load_config(reload=True)

    assert config["SESSION_IDLE_TIMEOUT_S"] == 180.0
    assert config["INVOKE_MAX_RETRIES"] == 2
    assert config["PORT"] == 3000
    assert config["STT_ENABLE"] is False
    assert config["PROMPT_TEMPLATE_DIR"] == PROMPTS_DIR


def test_logging_settings_are_part_of_config(monkeypatch):
    monkeypatch.setenv("LOG_JSONL_PATH", "/var/log/disputes.jsonl")

    config = load_config(reload=True)

    assert config["LOG_JSONL_PATH"] == "/var/log/disputes.jsonl"
    assert config["THIRD_PARTY_LOG_LEVEL"] == "WARNING"


def test_values_with_inline_comments(monkeypatch):
    monkeypatch.setenv("PORT", "8080  # local tunnel")
    monkeypatch.setenv("STT_ENABLE", "yes")

    config = load_config(reload=True)

    assert config["PORT"] == 8080
    assert config["STT_ENABLE"] is True


def test_malformed_number_falls_back(monkeypatch, capsys):
    monkeypatch.setenv("INVOKE_MAX_RETRIES", "many")

    assert load_config(reload=True)["INVOKE_MAX_RETRIES"] == 2
    assert "INVOKE_MAX_RETRIES" in capsys.readouterr().err


def test_missing_openai_key_is_fatal():
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        validate_required_env(load_config(reload=True))


def test_unknown_template_version_is_fatal(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("PROMPT_TEMPLATE_VERSION", "v99")

    with pytest.raises(ConfigurationError, match="v99"):
        validate_required_env(load_config(reload=True))


def test_valid_configuration_passes(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("TELEGRAM_TOKEN", "123:ABC")

    validate_required_env(load_config(reload=True))
