"""Typed configuration for the practice engine.

Defaults mirror the values the agents were tuned with. ``load_engine_config``
applies a small set of environment overrides on top and validates the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from env_validation import get_env_bool, get_env_int, get_env_str
from tier_system import DEFAULT_ADVANCEMENT_RUNGS, AdvancementRung

logger = logging.getLogger(__name__)

DEFAULT_HINT_LLM_URL = "http://localhost:4891/v1/chat/completions"
DEFAULT_HINT_MODEL = "DeepSeek-R1-Distill-Qwen-14B"


class EngineConfigError(ValueError):
    """Raised when the engine configuration is out of range."""


@dataclass(frozen=True)
class TiltConfig:
    consecutive_misses_threshold: int = 3
    error_burst_threshold: float = 0.70
    latency_increase_ratio: float = 1.40
    weight_consecutive_misses: float = 0.45
    weight_error_burst: float = 0.35
    weight_latency: float = 0.20
    # Hysteresis band for the recovery state.
    enter_recovery_threshold: float = 0.75
    exit_recovery_threshold: float = 0.30
    tilt_detected_threshold: float = 0.50
    auto_hint_threshold: float = 0.60
    auto_hint_min_misses: int = 2
    recovery_difficulty_delta: float = -0.15
    ramp_back_per_question: float = 0.03
    recovery_tier_offset: int = 5
    # Each fast correct answer in the current streak takes this off the score.
    fast_streak_discount: float = 0.05
    fast_latency_ratio: float = 0.80


@dataclass(frozen=True)
class EchoConfig:
    base_delay: int = 2
    max_delay: int = 16
    resolve_hits: int = 2
    max_active_entries: int = 20


@dataclass(frozen=True)
class PlacementConfig:
    max_questions: int = 20
    min_confidence: float = 0.85
    default_confidence: float = 0.5
    correct_step: float = 0.01
    fast_correct_step: float = 0.015
    miss_step: float = 0.02
    fast_latency_ms: int = 3000
    target_band_width: float = 0.05


@dataclass(frozen=True)
class HintConfig:
    max_tokens: int = 110
    use_llm: bool = False
    llm_url: str = DEFAULT_HINT_LLM_URL
    model: str = DEFAULT_HINT_MODEL
    timeout_seconds: int = 10
    ladder_path: Optional[str] = None


@dataclass(frozen=True)
class TelemetryConfig:
    accuracy_window: int = 10
    latency_window: int = 10
    recent_items: int = 10


@dataclass(frozen=True)
class AdvancementConfig:
    min_questions: int = 10
    min_accuracy: float = 0.85
    max_tilt: float = 0.5
    rungs: Tuple[AdvancementRung, ...] = DEFAULT_ADVANCEMENT_RUNGS


@dataclass(frozen=True)
class EngineConfig:
    tilt: TiltConfig = field(default_factory=TiltConfig)
    echo: EchoConfig = field(default_factory=EchoConfig)
    placement: PlacementConfig = field(default_factory=PlacementConfig)
    hints: HintConfig = field(default_factory=HintConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    advancement: AdvancementConfig = field(default_factory=AdvancementConfig)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise EngineConfigError(message)


def validate_engine_config(config: EngineConfig) -> EngineConfig:
    """Validate ranges and return ``config`` unchanged."""

    tilt = config.tilt
    _require(
        0.0 <= tilt.exit_recovery_threshold < tilt.enter_recovery_threshold <= 1.0,
        "tilt thresholds must satisfy 0 <= exit < enter <= 1",
    )
    _require(tilt.consecutive_misses_threshold >= 1, "consecutive_misses_threshold must be >= 1")
    _require(tilt.latency_increase_ratio > 1.0, "latency_increase_ratio must be > 1")
    weights = (tilt.weight_consecutive_misses, tilt.weight_error_burst, tilt.weight_latency)
    _require(all(w >= 0 for w in weights), "tilt weights must be non-negative")
    _require(abs(sum(weights) - 1.0) < 1e-6, "tilt weights must sum to 1")
    _require(tilt.recovery_difficulty_delta <= 0, "recovery_difficulty_delta must be <= 0")
    _require(tilt.ramp_back_per_question >= 0, "ramp_back_per_question must be >= 0")

    echo = config.echo
    _require(echo.base_delay >= 1, "echo base_delay must be >= 1")
    _require(echo.max_delay >= echo.base_delay, "echo max_delay must be >= base_delay")
    _require(echo.resolve_hits >= 1, "echo resolve_hits must be >= 1")
    _require(echo.max_active_entries >= 1, "echo max_active_entries must be >= 1")

    placement = config.placement
    _require(placement.max_questions >= 1, "placement max_questions must be >= 1")
    _require(0.0 <= placement.min_confidence <= 1.0, "placement min_confidence must be in [0, 1]")
    _require(placement.miss_step > 0 and placement.correct_step > 0, "placement steps must be positive")

    telemetry = config.telemetry
    _require(telemetry.accuracy_window >= 1, "accuracy_window must be >= 1")
    _require(telemetry.latency_window >= 1, "latency_window must be >= 1")
    _require(telemetry.recent_items >= 1, "recent_items must be >= 1")

    hints = config.hints
    _require(hints.max_tokens > 0, "hint max_tokens must be positive")
    if hints.use_llm:
        _require(
            hints.llm_url.startswith(("http://", "https://")),
            f"Invalid hint LLM URL: {hints.llm_url}",
        )

    advancement = config.advancement
    _require(advancement.min_questions >= 1, "advancement min_questions must be >= 1")
    _require(bool(advancement.rungs), "advancement needs at least one rung")
    return config


def load_engine_config(base: Optional[EngineConfig] = None) -> EngineConfig:
    """Build an :class:`EngineConfig` from defaults plus environment overrides."""

    config = base or EngineConfig()

    hints = replace(
        config.hints,
        use_llm=get_env_bool("PRACTICE_HINTS_USE_LLM", config.hints.use_llm),
        llm_url=get_env_str("PRACTICE_HINT_LLM_URL", config.hints.llm_url),
        model=get_env_str("PRACTICE_HINT_MODEL", config.hints.model),
        ladder_path=get_env_str("PRACTICE_HINT_LADDER_PATH", config.hints.ladder_path),
    )
    echo = replace(
        config.echo,
        resolve_hits=get_env_int("PRACTICE_ECHO_RESOLVE_HITS", config.echo.resolve_hits),
    )
    telemetry = replace(
        config.telemetry,
        recent_items=get_env_int("PRACTICE_RECENT_ITEMS", config.telemetry.recent_items),
    )

    config = replace(config, hints=hints, echo=echo, telemetry=telemetry)
    validate_engine_config(config)
    logger.debug("Engine config loaded: llm_hints=%s resolve_hits=%s", hints.use_llm, echo.resolve_hits)
    return config


DEFAULT_ENGINE_CONFIG = EngineConfig()
