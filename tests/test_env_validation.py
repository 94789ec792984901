import os

import pytest

import env_validation
from env_validation import EnvironmentError, get_env_bool, validate_environment


@pytest.fixture
def clean_env(monkeypatch):
    for var in list(env_validation.DEFAULTS) + list(env_validation.OPTIONAL_VARS) + ["SEED_QUESTIONS_ON_STARTUP"]:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    return monkeypatch


def test_defaults_are_applied(clean_env):
    validate_environment()
    assert os.environ["DB_PATH"] == "data.db"
    assert os.environ["PRACTICE_CATEGORY"] == "system-design"
    assert os.environ["QUESTION_BANK_PATH"].endswith("system_design_questions.json")


def test_explicit_values_are_kept(clean_env):
    clean_env.setenv("DB_PATH", "/tmp/practice.db")
    clean_env.setenv("PRACTICE_CATEGORY", "behavioral")
    validate_environment()
    assert os.environ["DB_PATH"] == "/tmp/practice.db"
    assert os.environ["PRACTICE_CATEGORY"] == "behavioral"


def test_blank_category_is_rejected(clean_env):
    clean_env.setenv("PRACTICE_CATEGORY", "   ")
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_webhook_url_must_be_http(clean_env):
    clean_env.setenv("EVENTS_WEBHOOK_URL", "ftp://example.com/hook")
    with pytest.raises(EnvironmentError):
        validate_environment()
    clean_env.setenv("EVENTS_WEBHOOK_URL", "https://example.com/hook")
    validate_environment()


def test_seed_flag_must_be_boolean(clean_env):
    clean_env.setenv("SEED_QUESTIONS_ON_STARTUP", "sometimes")
    with pytest.raises(EnvironmentError):
        validate_environment()


@pytest.mark.parametrize(
    "raw, expected",
    [("1", True), ("Yes", True), ("on", True), ("0", False), ("off", False), ("", False)],
)
def test_get_env_bool(monkeypatch, raw, expected):
    monkeypatch.setenv("SOME_FLAG", raw)
    assert get_env_bool("SOME_FLAG", default=True) is expected


def test_get_env_bool_default(monkeypatch):
    monkeypatch.delenv("SOME_FLAG", raising=False)
    assert get_env_bool("SOME_FLAG", default=True) is True
