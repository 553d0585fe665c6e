import json

import pytest

from generation_worker.preferences import ESCALATED_MODELS, STANDARD_MODELS, preferred_models
from generation_worker.settings import (
    DEFAULT_MODEL_NAME_MAP,
    get_log_level,
    get_model_name_map,
    get_worker_settings,
)

ENV_VARS = (
    "WORKER_CONCURRENCY",
    "WORKER_MAX_ATTEMPTS",
    "ESTIMATED_TOKENS_PER_PAGE",
    "ESCALATION_FAIL_COUNT",
    "PROMPT_VERSION",
    "USAGE_LEDGER_PATH",
    "LLM_MODEL_NAME_MAP",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_default_settings() -> None:
    settings = get_worker_settings()

    assert settings.concurrency == 5
    assert settings.max_attempts == 3
    assert settings.estimated_tokens_per_page == 2000
    assert settings.escalation_fail_count == 2
    assert settings.prompt_version == "v1"
    assert settings.usage_ledger_path == "llm_usage.json"
    assert settings.model_name_map == DEFAULT_MODEL_NAME_MAP
    assert get_log_level() == "INFO"


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_CONCURRENCY", "12")
    monkeypatch.setenv("WORKER_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("ESTIMATED_TOKENS_PER_PAGE", "3000")
    monkeypatch.setenv("PROMPT_VERSION", " v7 ")
    monkeypatch.setenv("USAGE_LEDGER_PATH", "/tmp/usage.json")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = get_worker_settings()

    assert settings.concurrency == 12
    assert settings.max_attempts == 5
    assert settings.estimated_tokens_per_page == 3000
    assert settings.prompt_version == "v7"
    assert settings.usage_ledger_path == "/tmp/usage.json"
    assert get_log_level() == "DEBUG"


@pytest.mark.parametrize("raw", ["0", "-3", "many"])
def test_invalid_concurrency_falls_back(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("WORKER_CONCURRENCY", raw)

    assert get_worker_settings().concurrency == 5


def test_model_name_map_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "LLM_MODEL_NAME_MAP",
        json.dumps({"g2.5-pro": "vertex_ai/gemini-2.5-pro", "bad": 3}),
    )

    mapping = get_model_name_map()

    assert mapping["g2.5-pro"] == "vertex_ai/gemini-2.5-pro"
    assert mapping["g2.5-flash"] == "gemini/gemini-2.5-flash"
    assert "bad" not in mapping


@pytest.mark.parametrize("raw", ["{oops", '["g2.5-pro"]'])
def test_unusable_model_name_map_is_ignored(
    monkeypatch: pytest.MonkeyPatch, raw: str
) -> None:
    monkeypatch.setenv("LLM_MODEL_NAME_MAP", raw)

    assert get_model_name_map() == DEFAULT_MODEL_NAME_MAP


@pytest.mark.parametrize("fail_count", [0, 1])
def test_fresh_pages_prefer_flash(fail_count: int) -> None:
    assert preferred_models(fail_count) == STANDARD_MODELS
    assert preferred_models(fail_count)[0] == "g2.5-flash"


@pytest.mark.parametrize("fail_count", [2, 3, 10])
def test_repeatedly_failing_pages_escalate_to_pro(fail_count: int) -> None:
    assert preferred_models(fail_count) == ESCALATED_MODELS
    assert preferred_models(fail_count)[0] == "g2.5-pro"


def test_preferred_models_returns_a_copy() -> None:
    models = preferred_models(0)
    models.clear()

    assert preferred_models(0) == STANDARD_MODELS
