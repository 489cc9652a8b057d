"""Coach agent: tilt detection, recovery mode and hints."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from engine_config import HintConfig, TiltConfig
from engines.content_variants import OPERATION_SYMBOLS, compute_result
from engines.state import SessionTelemetry
from hint_ladder import HINT_LADDER, HintLadderRegistry, HintLevel
from schemas import (
    CoachDirective,
    ContentItem,
    HintPayload,
    HintPolicy,
    RecoveryDirective,
)

_LOGGER = logging.getLogger(__name__)


class CoachMode(str, Enum):
    NORMAL = "normal"
    RECOVERING = "recovering"


@dataclass
class CoachAgentState:
    tilt_score: float = 0.0
    mode: CoachMode = CoachMode.NORMAL
    recovery_questions: int = 0
    recovery_difficulty_delta: float = 0.0
    consecutive_misses: int = 0
    recoveries_entered: int = 0

    @property
    def is_in_recovery(self) -> bool:
        return self.mode is CoachMode.RECOVERING


# ---------------------------------------------------------------------------
# Tilt
# ---------------------------------------------------------------------------
def calculate_tilt_score(telemetry: SessionTelemetry, config: Optional[TiltConfig] = None) -> float:
    """Blend miss streak, error density and slowdown into a score in ``[0, 1]``.

    Each fast correct answer in the current streak discounts the score.
    """

    config = config or TiltConfig()

    miss_signal = min(1.0, telemetry.consecutive_misses / config.consecutive_misses_threshold)
    burst_signal = min(1.0, telemetry.error_burst_score / config.error_burst_threshold)
    ratio = telemetry.latency_trend_ratio()
    latency_signal = min(1.0, max(0.0, (ratio - 1.0) / (config.latency_increase_ratio - 1.0)))

    score = (
        config.weight_consecutive_misses * miss_signal
        + config.weight_error_burst * burst_signal
        + config.weight_latency * latency_signal
    )
    score -= config.fast_streak_discount * telemetry.fast_correct_streak
    return min(1.0, max(0.0, score))


# ---------------------------------------------------------------------------
# Error signatures
# ---------------------------------------------------------------------------
def _as_number(value: Any) -> Optional[float]:
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _digits(value: float) -> str:
    if float(value).is_integer():
        return str(abs(int(value)))
    return str(abs(value))


def detect_error_signature(correct_answer: float, user_answer: float) -> str:
    """Classify a wrong answer.

    Returns one of ``magnitude_error``, ``off_by_one``, ``place_value_error``,
    ``near_fact_confusion`` or ``unknown``.
    """

    diff = user_answer - correct_answer
    if correct_answer != 0:
        ratio = user_answer / correct_answer
        for factor in (10.0, 0.1, 100.0, 0.01):
            if abs(ratio - factor) < factor * 0.001:
                return "magnitude_error"

    if abs(abs(diff) - 1) < 1e-9:
        return "off_by_one"

    correct_digits, user_digits = _digits(correct_answer), _digits(user_answer)
    if (
        correct_digits != user_digits
        and len(correct_digits) == len(user_digits)
        and sorted(correct_digits) == sorted(user_digits)
    ):
        return "place_value_error"

    if correct_answer != 0:
        off = abs(diff) / abs(correct_answer)
        if 0.01 < off < 0.2:
            return "near_fact_confusion"
    return "unknown"


# ---------------------------------------------------------------------------
# Hints
# ---------------------------------------------------------------------------
def _split(n: int) -> Tuple[int, int]:
    if n > 10 and n % 10 == 0:
        return n - 10, 10
    if n >= 10 and n % 10:
        return n - n % 10, n % 10
    if n > 5:
        return 5, n - 5
    if n >= 2:
        return n - 1, 1
    return n, 0


def _hint_context(item: ContentItem) -> Dict[str, Any]:
    a, b = item.operand1, item.operand2
    operation = item.operation
    answer = compute_result(operation, a, b)

    if operation == "division":
        split_hi, split_lo = _split(answer)
        part_hi = b * split_hi
        part_lo = a - part_hi
    else:
        split_hi, split_lo = _split(b)
        if operation == "multiplication":
            part_hi, part_lo = a * split_hi, a * split_lo
        elif operation == "addition":
            part_hi, part_lo = a + split_hi, split_lo
        else:
            part_hi, part_lo = a - split_hi, split_lo

    return {
        "a": a,
        "b": b,
        "symbol": OPERATION_SYMBOLS[operation],
        "times": OPERATION_SYMBOLS["multiplication"],
        "answer": answer,
        "split_hi": split_hi,
        "split_lo": split_lo,
        "part_hi": part_hi,
        "part_lo": part_lo,
    }


def _micro_steps(operation: str, ctx: Dict[str, Any], reveal: bool) -> List[str]:
    if operation == "multiplication":
        steps = [
            f"{ctx['a']} × {ctx['split_hi']} = {ctx['part_hi']}",
            f"{ctx['a']} × {ctx['split_lo']} = {ctx['part_lo']}",
        ]
        final = f"{ctx['part_hi']} + {ctx['part_lo']} = {ctx['answer']}"
    elif operation == "division":
        steps = [
            f"{ctx['b']} × {ctx['split_hi']} = {ctx['part_hi']}",
            f"{ctx['a']} - {ctx['part_hi']} = {ctx['part_lo']}",
        ]
        final = f"{ctx['split_hi']} + {ctx['split_lo']} = {ctx['answer']}"
    else:
        sign = "+" if operation == "addition" else "-"
        steps = [f"{ctx['a']} {sign} {ctx['split_hi']} = {ctx['part_hi']}"]
        final = f"{ctx['part_hi']} {sign} {ctx['split_lo']} = {ctx['answer']}"
    if reveal:
        steps.append(final)
    return steps


def _ladder_candidates(
    levels: Sequence[HintLevel],
    operation: str,
    ctx: Dict[str, Any],
    signature_text: Optional[str],
    first_level: int,
) -> List[Tuple[HintLevel, str]]:
    candidates: List[Tuple[HintLevel, str]] = []
    for level in levels:
        for template in level.templates_for(operation):
            text = template.format(**ctx)
            if signature_text and level.level == first_level:
                candidates.append((level, f"{signature_text} {text}"))
            candidates.append((level, text))
    return candidates


def _request_llm_hint(
    item: ContentItem,
    user_answer: Any,
    latency_ms: float,
    attempt_number: int,
    previous_hints: Sequence[str],
    config: HintConfig,
) -> Optional[str]:
    messages = [
        {
            "role": "system",
            "content": (
                "You are a patient arithmetic coach. Reply with one short Socratic hint. "
                "Never state the final answer."
            ),
        },
        {
            "role": "user",
            "content": (
                f"Problem: {item.prompt_text}\n"
                f"Learner answer: {user_answer}\n"
                f"Attempt: {attempt_number}\n"
                f"Seconds taken: {latency_ms / 1000:.1f}\n"
                f"Hints already given: {list(previous_hints)}"
            ),
        },
    ]
    payload = {
        "model": config.model,
        "messages": messages,
        "max_tokens": config.max_tokens,
        "temperature": 0.4,
    }
    response = requests.post(config.llm_url, json=payload, timeout=config.timeout_seconds)
    response.raise_for_status()
    data = response.json()
    try:
        text = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        text = data["choices"][0]["text"]
    return str(text).strip() or None


def _reveals_answer(text: str, item: ContentItem) -> bool:
    answer = item.correct_answer
    token = str(int(answer)) if float(answer).is_integer() else str(answer)
    return re.search(rf"(?<![\d.]){re.escape(token)}(?!\d)(?!\.\d)", text) is not None


def get_hint(
    item: ContentItem,
    user_answer: Any,
    latency_ms: float,
    attempt_number: int,
    previous_hints: Sequence[str] = (),
    config: Optional[HintConfig] = None,
    ladder: Optional[HintLadderRegistry] = None,
) -> HintPayload:
    """Return the next hint for ``item``.

    The ladder rung follows ``attempt_number``; texts already in
    ``previous_hints`` are skipped, moving further up the ladder, then back to
    lower rungs, and finally numbering the last rung's text.
    """

    config = config or HintConfig()
    ladder = ladder or HINT_LADDER
    attempt_number = max(1, int(attempt_number))
    used = set(previous_hints)

    if config.use_llm:
        try:
            text = _request_llm_hint(
                item, user_answer, latency_ms, attempt_number, previous_hints, config
            )
        except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as exc:
            _LOGGER.warning("LLM hint failed, using ladder: %s", exc)
        else:
            if text and text not in used and not _reveals_answer(text, item):
                level = ladder.level_for_attempt(attempt_number)
                return HintPayload(
                    hint_text=text,
                    hint_type=level.hint_type,
                    level=level.level,
                    confidence=0.6,
                    is_llm_generated=True,
                )
            _LOGGER.debug("Discarding LLM hint for item %s", item.item_id)

    ctx = _hint_context(item)
    signature_text = None
    numeric_answer = _as_number(user_answer)
    if numeric_answer is not None and abs(numeric_answer - item.correct_answer) >= 0.01:
        signature = detect_error_signature(item.correct_answer, numeric_answer)
        signature_text = ladder.error_hint(signature)

    first = ladder.level_for_attempt(attempt_number)
    upward = _ladder_candidates(
        ladder.levels_from(attempt_number), item.operation, ctx, signature_text, first.level
    )
    lower = [level for level in ladder.levels if level.level < first.level]
    downward = _ladder_candidates(lower, item.operation, ctx, None, first.level)

    chosen: Optional[Tuple[HintLevel, str]] = None
    for level, text in upward + downward:
        if text not in used:
            chosen = (level, text)
            break

    if chosen is None:
        level, base = upward[-1]
        counter = 2
        while f"{base} (hint {counter})" in used:
            counter += 1
        chosen = (level, f"{base} (hint {counter})")

    level, text = chosen
    reveal = level.level >= ladder.max_level
    return HintPayload(
        hint_text=text,
        hint_type=level.hint_type,
        level=level.level,
        confidence=0.8 if signature_text else 0.7,
        is_llm_generated=False,
        micro_steps=_micro_steps(item.operation, ctx, reveal) if level.level >= 3 else [],
    )


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------
class CoachAgent:
    """Keeps the learner in flow.

    The mode only changes at the two thresholds: ``normal -> recovering`` when
    tilt reaches ``enter_recovery_threshold`` and ``recovering -> normal`` when
    it falls below ``exit_recovery_threshold``.
    """

    def __init__(
        self,
        config: Optional[TiltConfig] = None,
        hints: Optional[HintConfig] = None,
        ladder: Optional[HintLadderRegistry] = None,
    ) -> None:
        self.config = config or TiltConfig()
        self.hints = hints or HintConfig()
        self.ladder = ladder or HINT_LADDER

    def initialize(self) -> CoachAgentState:
        return CoachAgentState()

    def update(
        self,
        state: CoachAgentState,
        telemetry: SessionTelemetry,
        is_correct: bool,
    ) -> CoachAgentState:
        state.tilt_score = calculate_tilt_score(telemetry, self.config)
        state.consecutive_misses = telemetry.consecutive_misses

        if state.mode is CoachMode.NORMAL:
            if state.tilt_score >= self.config.enter_recovery_threshold:
                state.mode = CoachMode.RECOVERING
                state.recovery_questions = 0
                state.recovery_difficulty_delta = self.config.recovery_difficulty_delta
                state.recoveries_entered += 1
                _LOGGER.info("Coach entering recovery (tilt=%.2f)", state.tilt_score)
            return state

        state.recovery_questions += 1
        state.recovery_difficulty_delta = min(
            0.0, state.recovery_difficulty_delta + self.config.ramp_back_per_question
        )
        if state.tilt_score < self.config.exit_recovery_threshold:
            state.mode = CoachMode.NORMAL
            state.recovery_difficulty_delta = 0.0
            _LOGGER.info(
                "Coach leaving recovery after %s questions (tilt=%.2f, last_correct=%s)",
                state.recovery_questions,
                state.tilt_score,
                is_correct,
            )
        return state

    def directive(self, state: CoachAgentState) -> CoachDirective:
        recovering = state.is_in_recovery
        auto_hint = (
            state.tilt_score > self.config.auto_hint_threshold
            and state.consecutive_misses >= self.config.auto_hint_min_misses
        )
        return CoachDirective(
            tilt_score=state.tilt_score,
            tilt_detected=state.tilt_score >= self.config.tilt_detected_threshold,
            mode=state.mode.value,
            recovery=RecoveryDirective(
                enabled=recovering,
                difficulty_delta=state.recovery_difficulty_delta if recovering else 0.0,
                easier_tier_offset=self.config.recovery_tier_offset if recovering else 0,
            ),
            hint_policy=HintPolicy(
                on_wrong_answer=True,
                on_help_request=True,
                auto_hint=auto_hint or recovering,
            ),
        )

    def adjusted_difficulty(self, base: float, state: CoachAgentState) -> float:
        if not state.is_in_recovery:
            return base
        return max(0.0, min(1.0, base + state.recovery_difficulty_delta))

    def get_hint(
        self,
        item: ContentItem,
        user_answer: Any,
        latency_ms: float,
        attempt_number: int,
        previous_hints: Sequence[str] = (),
    ) -> HintPayload:
        return get_hint(
            item,
            user_answer,
            latency_ms,
            attempt_number,
            previous_hints,
            config=self.hints,
            ladder=self.ladder,
        )
