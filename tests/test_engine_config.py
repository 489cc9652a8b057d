import os
from dataclasses import replace

import pytest

import env_validation
from engine_config import (
    DEFAULT_ENGINE_CONFIG,
    EngineConfig,
    EngineConfigError,
    TiltConfig,
    load_engine_config,
    validate_engine_config,
)
from env_validation import EnvironmentError, get_env_bool, get_env_float, get_env_int, validate_environment


def test_defaults_are_valid():
    assert validate_engine_config(DEFAULT_ENGINE_CONFIG) is DEFAULT_ENGINE_CONFIG
    assert DEFAULT_ENGINE_CONFIG.tilt.enter_recovery_threshold == 0.75
    assert DEFAULT_ENGINE_CONFIG.tilt.exit_recovery_threshold == 0.30
    assert DEFAULT_ENGINE_CONFIG.echo.resolve_hits == 2
    assert not DEFAULT_ENGINE_CONFIG.hints.use_llm


@pytest.mark.parametrize(
    "tilt",
    [
        TiltConfig(enter_recovery_threshold=0.3, exit_recovery_threshold=0.3),
        TiltConfig(weight_latency=0.5),
        TiltConfig(latency_increase_ratio=1.0),
        TiltConfig(recovery_difficulty_delta=0.1),
    ],
)
def test_invalid_tilt_settings_are_rejected(tilt):
    with pytest.raises(EngineConfigError):
        validate_engine_config(EngineConfig(tilt=tilt))


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PRACTICE_HINTS_USE_LLM", "true")
    monkeypatch.setenv("PRACTICE_HINT_LLM_URL", "https://llm.example/v1/chat/completions")
    monkeypatch.setenv("PRACTICE_HINT_MODEL", "tiny-coach")
    monkeypatch.setenv("PRACTICE_ECHO_RESOLVE_HITS", "3")
    monkeypatch.setenv("PRACTICE_RECENT_ITEMS", "4")
    monkeypatch.setenv("PRACTICE_HINT_LADDER_PATH", "ladders/short.json")

    config = load_engine_config()
    assert config.hints.use_llm
    assert config.hints.llm_url == "https://llm.example/v1/chat/completions"
    assert config.hints.model == "tiny-coach"
    assert config.echo.resolve_hits == 3
    assert config.telemetry.recent_items == 4
    assert config.hints.ladder_path == "ladders/short.json"
    assert config.tilt == DEFAULT_ENGINE_CONFIG.tilt


def test_bad_override_values(monkeypatch):
    monkeypatch.setenv("PRACTICE_ECHO_RESOLVE_HITS", "0")
    with pytest.raises(EngineConfigError):
        load_engine_config()

    monkeypatch.setenv("PRACTICE_ECHO_RESOLVE_HITS", "two")
    with pytest.raises(EnvironmentError):
        load_engine_config()


def test_overrides_apply_on_top_of_a_base_config(monkeypatch):
    monkeypatch.delenv("PRACTICE_RECENT_ITEMS", raising=False)
    base = replace(DEFAULT_ENGINE_CONFIG, telemetry=replace(DEFAULT_ENGINE_CONFIG.telemetry, recent_items=6))
    assert load_engine_config(base).telemetry.recent_items == 6


def test_validate_environment_fills_defaults(monkeypatch):
    # register the variables so monkeypatch restores them afterwards
    monkeypatch.setenv("TIER_DB_PATH", "placeholder")
    monkeypatch.setenv("SESSION_TTL_SECONDS", "1")
    monkeypatch.delenv("TIER_DB_PATH")
    monkeypatch.delenv("SESSION_TTL_SECONDS")
    validate_environment()
    assert os.environ["TIER_DB_PATH"] == "practice.db"
    assert os.environ["SESSION_TTL_SECONDS"] == "3600"


def test_validate_environment_rejects_bad_values(monkeypatch):
    monkeypatch.setenv("TIER_DB_PATH", "x.db")
    monkeypatch.setenv("SESSION_TTL_SECONDS", "-5")
    with pytest.raises(EnvironmentError):
        validate_environment()

    monkeypatch.setenv("SESSION_TTL_SECONDS", "60")
    monkeypatch.setenv("PRACTICE_HINT_LLM_URL", "ftp://nope")
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_llm_hints_without_endpoint_only_warn(monkeypatch, caplog):
    monkeypatch.setenv("TIER_DB_PATH", "x.db")
    monkeypatch.setenv("SESSION_TTL_SECONDS", "60")
    monkeypatch.setenv("PRACTICE_HINTS_USE_LLM", "1")
    monkeypatch.delenv("PRACTICE_HINT_LLM_URL", raising=False)
    monkeypatch.delenv("PRACTICE_HINT_MODEL", raising=False)

    caplog.set_level("WARNING", logger=env_validation.logger.name)
    validate_environment()
    assert any("PRACTICE_HINT_LLM_URL" in record.getMessage() for record in caplog.records)


def test_env_readers(monkeypatch):
    monkeypatch.setenv("FLAG", "Yes")
    assert get_env_bool("FLAG")
    monkeypatch.setenv("FLAG", "off")
    assert not get_env_bool("FLAG", True)
    monkeypatch.setenv("COUNT", " 12 ")
    assert get_env_int("COUNT", 1) == 12
    monkeypatch.setenv("COUNT", "")
    assert get_env_int("COUNT", 1) == 1
    monkeypatch.setenv("RATIO", "0.25")
    assert get_env_float("RATIO", 1.0) == 0.25
    monkeypatch.setenv("RATIO", "quarter")
    with pytest.raises(EnvironmentError):
        get_env_float("RATIO", 1.0)
