"""Per-session learner telemetry and orchestrator state containers."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Deque, Dict, List, Optional

from engine_config import EngineConfig, TelemetryConfig
from schemas import ContentItem, MathTiers

if TYPE_CHECKING:
    from engines.coach_agent import CoachAgentState
    from engines.echo_agent import EchoAgentState
    from engines.placement_agent import PlacementAgentState

DEFAULT_BASELINE_LATENCY_MS = 3000.0
BASELINE_CALIBRATION_QUESTIONS = 5


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


@dataclass
class SessionTelemetry:
    """Rolling answer windows plus the streak counters derived from them."""

    recent_correctness: Deque[bool]
    recent_latency_ms: Deque[float]
    consecutive_misses: int = 0
    consecutive_correct: int = 0
    fast_correct_streak: int = 0
    max_streak: int = 0
    error_burst_score: float = 0.0
    baseline_latency_ms: float = DEFAULT_BASELINE_LATENCY_MS
    questions_since_start: int = 0
    total_correct: int = 0
    hint_requests: int = 0
    _baseline_samples: List[float] = field(default_factory=list, repr=False)

    @classmethod
    def create(cls, config: Optional[TelemetryConfig] = None) -> "SessionTelemetry":
        config = config or TelemetryConfig()
        return cls(
            recent_correctness=deque(maxlen=config.accuracy_window),
            recent_latency_ms=deque(maxlen=config.latency_window),
        )

    def record(
        self,
        is_correct: bool,
        latency_ms: float,
        help_used: bool = False,
        fast_latency_ratio: float = 0.8,
    ) -> None:
        latency = max(0.0, float(latency_ms))
        self.recent_correctness.append(bool(is_correct))
        self.recent_latency_ms.append(latency)

        if is_correct:
            self.consecutive_correct += 1
            self.consecutive_misses = 0
            self.total_correct += 1
            self.max_streak = max(self.max_streak, self.consecutive_correct)
            if latency <= self.baseline_latency_ms * fast_latency_ratio:
                self.fast_correct_streak += 1
            else:
                self.fast_correct_streak = 0
        else:
            self.consecutive_misses += 1
            self.consecutive_correct = 0
            self.fast_correct_streak = 0

        misses = sum(1 for correct in self.recent_correctness if not correct)
        self.error_burst_score = misses / len(self.recent_correctness)

        if help_used:
            self.hint_requests += 1

        # Baseline comes from correct answers among the first few questions.
        if self.questions_since_start < BASELINE_CALIBRATION_QUESTIONS and is_correct and latency > 0:
            self._baseline_samples.append(latency)
            self.baseline_latency_ms = sum(self._baseline_samples) / len(self._baseline_samples)

        self.questions_since_start += 1

    def latency_trend_ratio(self) -> float:
        """Mean of the last three latencies relative to the baseline."""

        if len(self.recent_latency_ms) < 3 or self.baseline_latency_ms <= 0:
            return 1.0
        recent = list(self.recent_latency_ms)[-3:]
        return (sum(recent) / len(recent)) / self.baseline_latency_ms

    @property
    def accuracy(self) -> float:
        if not self.questions_since_start:
            return 0.0
        return self.total_correct / self.questions_since_start


@dataclass
class LearnerModel:
    """What the session knows about the learner for one operation."""

    user_id: str
    math_tiers: MathTiers
    telemetry: SessionTelemetry
    confidence: float = 0.5

    def tier_for(self, operation: str) -> int:
        return self.math_tiers.get(operation)


@dataclass
class OrchestratorState:
    """Session-scoped state. Owned by exactly one orchestrator session."""

    session_id: str
    user_id: str
    operation: str
    config: EngineConfig
    learner: LearnerModel
    placement: "PlacementAgentState"
    coach: "CoachAgentState"
    echo: "EchoAgentState"
    recent_items: Deque[ContentItem]
    question_number: int = 0
    status: SessionStatus = SessionStatus.ACTIVE
    current_item: Optional[ContentItem] = None
    # item_id -> hint texts already shown for that item
    hint_history: Dict[str, List[str]] = field(default_factory=dict)
    correctly_answered: set[str] = field(default_factory=set)
    started_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @property
    def persisted_tier(self) -> int:
        return self.learner.tier_for(self.operation)

    def touch(self) -> None:
        self.last_activity = time.time()
