"""Placement agent: confidence-weighted tier estimate for the running session."""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from engine_config import PlacementConfig, TelemetryConfig
from schemas import ContentItem, PlacementDirective
from tier_system import (
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    clamp_tier,
    difficulty_to_tier,
    tier_to_difficulty,
)

_LOGGER = logging.getLogger(__name__)

CONFIDENCE_CAP = 0.99


@dataclass
class PlacementAgentState:
    estimated_tier: int
    estimated_difficulty: float
    confidence_score: float
    questions_answered: int = 0
    recent_correctness: Deque[bool] = field(default_factory=lambda: deque(maxlen=10))
    recent_latency: Deque[float] = field(default_factory=lambda: deque(maxlen=10))


class PlacementAgent:
    """Tracks where the learner actually is during a session.

    The estimate moves in small difficulty steps after every answer and the
    confidence score grows with sample size and shrinks with answer variance.
    Nothing here writes the persisted tier; the session-end advancement
    decision owns that.
    """

    def __init__(
        self,
        config: Optional[PlacementConfig] = None,
        telemetry: Optional[TelemetryConfig] = None,
    ) -> None:
        self.config = config or PlacementConfig()
        self.window = (telemetry or TelemetryConfig()).accuracy_window

    def initialize(self, existing_tier: int) -> PlacementAgentState:
        tier = clamp_tier(existing_tier)
        return PlacementAgentState(
            estimated_tier=tier,
            estimated_difficulty=tier_to_difficulty(tier),
            confidence_score=self.config.default_confidence,
            recent_correctness=deque(maxlen=self.window),
            recent_latency=deque(maxlen=self.window),
        )

    # ------------------------------------------------------------------
    def record_answer(
        self,
        state: PlacementAgentState,
        item: Optional[ContentItem],
        is_correct: bool,
        latency_ms: float,
    ) -> PlacementAgentState:
        """Fold one answer into the estimate and return the updated state."""

        latency = max(0.0, float(latency_ms))
        state.recent_correctness.append(bool(is_correct))
        state.recent_latency.append(latency)
        state.questions_answered += 1

        if is_correct:
            fast = 0 < latency < self.config.fast_latency_ms
            step = self.config.fast_correct_step if fast else self.config.correct_step
        else:
            step = -self.config.miss_step

        difficulty = state.estimated_difficulty + step
        state.estimated_difficulty = max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, difficulty))
        state.estimated_tier = difficulty_to_tier(state.estimated_difficulty)
        state.confidence_score = self.compute_confidence(state)

        if _LOGGER.isEnabledFor(logging.DEBUG):
            _LOGGER.debug(
                "placement update item=%s correct=%s tier=%s confidence=%.3f",
                item.item_id if item is not None else None,
                is_correct,
                state.estimated_tier,
                state.confidence_score,
            )
        return state

    def compute_confidence(self, state: PlacementAgentState) -> float:
        """Return the confidence in ``[0, CONFIDENCE_CAP]``.

        ``0.3 + 0.4 * sample_term + 0.3 * (1 - variance_term)`` where the sample
        term saturates exponentially with questions answered and the variance
        term mixes the Bernoulli variance of correctness with the coefficient
        of variation of latency over the current window.
        """

        if not state.recent_correctness:
            return self.config.default_confidence

        n = state.questions_answered
        sample_term = 1.0 - math.exp(-2.0 * n / self.config.max_questions)
        variance_term = 0.7 * self._correctness_variance(state) + 0.3 * self._latency_variation(state)
        confidence = 0.3 + sample_term * 0.4 + (1.0 - variance_term) * 0.3
        return max(0.0, min(CONFIDENCE_CAP, confidence))

    @staticmethod
    def _correctness_variance(state: PlacementAgentState) -> float:
        window = list(state.recent_correctness)
        p = sum(window) / len(window)
        # p * (1 - p) peaks at 0.25
        return min(1.0, 4.0 * p * (1.0 - p))

    @staticmethod
    def _latency_variation(state: PlacementAgentState) -> float:
        window = [value for value in state.recent_latency if value > 0]
        if len(window) < 2:
            return 0.0
        mean = sum(window) / len(window)
        if mean <= 0:
            return 0.0
        variance = sum((value - mean) ** 2 for value in window) / len(window)
        return min(1.0, math.sqrt(variance) / mean)

    # ------------------------------------------------------------------
    def directive(self, state: PlacementAgentState) -> PlacementDirective:
        target = tier_to_difficulty(state.estimated_tier)
        width = self.config.target_band_width
        return PlacementDirective(
            target_difficulty=target,
            min_difficulty=max(MIN_DIFFICULTY, target - width),
            max_difficulty=min(MAX_DIFFICULTY, target + width),
            estimated_tier=state.estimated_tier,
            confidence_score=state.confidence_score,
        )

    def is_placement_complete(self, state: PlacementAgentState) -> bool:
        return (
            state.questions_answered >= self.config.max_questions
            or state.confidence_score >= self.config.min_confidence
        )
