"""Practice session orchestrator.

Each turn asks the coach, placement and echo agents (in that order) for
their directives, picks the next item and hands back a directive envelope.
Answers flow the other way: placement window, coach tilt, echo queue.
A session is ``active`` until :meth:`PracticeOrchestrator.end_session`
moves it to ``ended``.
"""

from __future__ import annotations

import logging
import math
import random
import uuid
from collections import deque
from typing import Any, Mapping, Optional, Tuple, Union

from engine_config import DEFAULT_ENGINE_CONFIG, EngineConfig
from engines.coach_agent import CoachAgent
from engines.content_variants import Variant, generate_item
from engines.echo_agent import EchoAgent
from engines.placement_agent import PlacementAgent
from engines.state import LearnerModel, OrchestratorState, SessionStatus, SessionTelemetry
from hint_ladder import HintLadderRegistry
from schemas import (
    AggregateStats,
    AIDirectiveEnvelope,
    CoachDirective,
    ContentItem,
    Directives,
    EchoDirective,
    HintPayload,
    MathTiers,
    MilestoneReward,
    PlacementDirective,
    Selection,
    SessionStats,
    TierProgression,
)
from tier_system import (
    OPERATIONS,
    apply_band_cap,
    check_milestone_reward,
    difficulty_to_tier,
    get_band_for_tier,
    propose_tier_advancement,
    tier_to_difficulty,
)

_LOGGER = logging.getLogger(__name__)

ANSWER_TOLERANCE = 0.01

__all__ = [
    "SessionEndedError",
    "SessionStatus",
    "PracticeOrchestrator",
    "check_answer",
]


class SessionEndedError(RuntimeError):
    """Raised when a turn is attempted on a session that has ended."""


def check_answer(user_answer: Any, correct_answer: float) -> bool:
    """Numeric comparison with a small tolerance; non-numeric input is wrong."""

    try:
        value = float(str(user_answer).strip())
    except (TypeError, ValueError):
        return False
    if math.isnan(value) or math.isinf(value):
        return False
    return abs(value - float(correct_answer)) < ANSWER_TOLERANCE


class PracticeOrchestrator:
    """Runs practice sessions over :class:`OrchestratorState` objects.

    The orchestrator holds no per-session data itself; everything lives on the
    state object so a session store can keep it between calls.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
        ladder: Optional[HintLadderRegistry] = None,
    ) -> None:
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.rng = rng or random.Random()
        self.placement = PlacementAgent(self.config.placement, self.config.telemetry)
        if ladder is None and self.config.hints.ladder_path:
            ladder = HintLadderRegistry(self.config.hints.ladder_path)
        self.coach = CoachAgent(self.config.tilt, self.config.hints, ladder)
        self.echo = EchoAgent(self.config.echo, self.rng)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(
        self,
        user_id: str,
        operation: str,
        learner_math_tiers: Union[MathTiers, Mapping[str, Any], None] = None,
        session_id: Optional[str] = None,
    ) -> OrchestratorState:
        """Build a fresh session state at question 0."""

        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")

        if isinstance(learner_math_tiers, MathTiers):
            tiers = learner_math_tiers
        else:
            tiers = MathTiers.model_validate(dict(learner_math_tiers or {}))

        placement = self.placement.initialize(tiers.get(operation))
        learner = LearnerModel(
            user_id=user_id,
            math_tiers=tiers,
            telemetry=SessionTelemetry.create(self.config.telemetry),
            confidence=placement.confidence_score,
        )
        return OrchestratorState(
            session_id=session_id or uuid.uuid4().hex,
            user_id=user_id,
            operation=operation,
            config=self.config,
            learner=learner,
            placement=placement,
            coach=self.coach.initialize(),
            echo=self.echo.initialize(),
            recent_items=deque(maxlen=self.config.telemetry.recent_items),
        )

    def _require_active(self, state: OrchestratorState) -> None:
        if state.status is not SessionStatus.ACTIVE:
            raise SessionEndedError(f"Session {state.session_id} has ended")

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    def get_next_question(self, state: OrchestratorState) -> Tuple[OrchestratorState, AIDirectiveEnvelope]:
        """Advance to the next question and return it inside an envelope.

        Due echo items take priority over fresh content, except while the
        coach is in recovery; recovery items are generated below the target
        tier but never below the start of the learner's band.
        """

        self._require_active(state)
        state.question_number += 1

        coach_directive = self.coach.directive(state.coach)
        placement_directive = self.placement.directive(state.placement)

        band = get_band_for_tier(state.persisted_tier)
        target_tier = max(band.lower, min(band.upper, placement_directive.estimated_tier))
        avoid = [item.skill_id for item in state.recent_items]

        item: Optional[ContentItem] = None
        source = "fresh"
        if not coach_directive.recovery.enabled:
            due = self.echo.next_due(state.echo, state.question_number)
            if due is not None:
                _, item = due
                source = "echo"

        if item is None and coach_directive.recovery.enabled:
            eased = difficulty_to_tier(
                self.coach.adjusted_difficulty(tier_to_difficulty(target_tier), state.coach)
            )
            target_tier = max(
                band.lower,
                min(eased, target_tier - coach_directive.recovery.easier_tier_offset),
            )
            source = "recovery"

        if item is None:
            item = generate_item(state.operation, target_tier, Variant.DIRECT, rng=self.rng, avoid=avoid)

        _LOGGER.debug(
            "session=%s q=%s source=%s tier=%s skill=%s",
            state.session_id,
            state.question_number,
            source,
            target_tier,
            item.skill_id,
        )
        echo_directive = self.echo.directive(state.echo, state.question_number)
        state.recent_items.append(item)
        state.current_item = item
        state.touch()

        envelope = self.build_envelope(
            state,
            item,
            source,
            target_tier,
            placement_directive,
            coach_directive,
            echo_directive,
        )
        return state, envelope

    def process_answer(
        self,
        state: OrchestratorState,
        item: ContentItem,
        user_answer: Any,
        is_correct: Optional[bool] = None,
        latency_ms: float = 0.0,
        help_used: bool = False,
    ) -> Tuple[OrchestratorState, Optional[HintPayload]]:
        """Fold an answer into every agent and return a hint when one was asked for.

        ``is_correct`` is derived from ``user_answer`` when not supplied.
        """

        self._require_active(state)
        if is_correct is None:
            is_correct = check_answer(user_answer, item.correct_answer)

        telemetry = state.learner.telemetry
        telemetry.record(is_correct, latency_ms, help_used, self.config.tilt.fast_latency_ratio)

        self.placement.record_answer(state.placement, item, is_correct, latency_ms)
        state.learner.confidence = state.placement.confidence_score

        self.coach.update(state.coach, telemetry, is_correct)

        if is_correct:
            self.echo.record_hit(state.echo, item, state.question_number)
            state.correctly_answered.add(item.item_id)
        else:
            self.echo.record_miss(state.echo, item, state.question_number)

        hint = None
        if not is_correct and help_used:
            hint = self.request_hint(state, user_answer, latency_ms, item)

        state.touch()
        return state, hint

    def request_hint(
        self,
        state: OrchestratorState,
        user_answer: Any,
        latency_ms: float,
        item: Optional[ContentItem] = None,
    ) -> Optional[HintPayload]:
        """Return the next non-repeating hint for ``item`` (default: current item).

        Returns ``None`` when there is no item or the learner already answered
        it correctly.
        """

        item = item or state.current_item
        if item is None or item.item_id in state.correctly_answered:
            return None

        previous = state.hint_history.setdefault(item.item_id, [])
        hint = self.coach.get_hint(item, user_answer, latency_ms, len(previous) + 1, previous)
        previous.append(hint.hint_text)
        return hint

    # ------------------------------------------------------------------
    # Session end
    # ------------------------------------------------------------------
    def end_session(
        self,
        state: OrchestratorState,
        aggregate_stats: AggregateStats,
        tier_store: Optional[Any] = None,
    ) -> TierProgression:
        """Decide tier advancement and end the session.

        The tier store is written only when the tier actually changed.
        """

        self._require_active(state)

        previous_tier = state.persisted_tier
        confidence = (
            aggregate_stats.confidence
            if aggregate_stats.confidence is not None
            else state.placement.confidence_score
        )
        proposed = propose_tier_advancement(
            aggregate_stats.accuracy,
            confidence,
            aggregate_stats.total_questions,
            aggregate_stats.max_streak,
            aggregate_stats.tilt_score,
            self.config.advancement,
        )
        new_tier, blocked = apply_band_cap(previous_tier, proposed)

        milestone = check_milestone_reward(previous_tier, new_tier)
        reward = MilestoneReward.from_milestone(milestone) if milestone is not None else None

        if new_tier != previous_tier:
            if tier_store is not None:
                tier_store.apply_tier_change(state.user_id, state.operation, new_tier, reward)
            state.learner.math_tiers = state.learner.math_tiers.model_copy(
                update={state.operation: new_tier}
            )

        state.status = SessionStatus.ENDED
        state.touch()

        return TierProgression(
            previous_tier=previous_tier,
            new_tier=new_tier,
            advanced=new_tier > previous_tier,
            tiers_gained=max(0, new_tier - previous_tier),
            band_name=get_band_for_tier(new_tier).name,
            blocked_by_band_boundary=blocked,
            milestone=reward,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def build_envelope(
        self,
        state: OrchestratorState,
        item: ContentItem,
        source: str,
        target_tier: int,
        placement: PlacementDirective,
        coach: CoachDirective,
        echo: EchoDirective,
    ) -> AIDirectiveEnvelope:
        return AIDirectiveEnvelope(
            session_id=state.session_id,
            question_number=state.question_number,
            selection=Selection(item=item, source=source, target_tier=target_tier),
            directives=Directives(placement=placement, coach=coach, echo=echo),
        )

    def session_stats(self, state: OrchestratorState) -> SessionStats:
        telemetry = state.learner.telemetry
        echo_stats = self.echo.stats(state.echo)
        return SessionStats(
            question_number=state.question_number,
            questions_answered=telemetry.questions_since_start,
            correct_answers=telemetry.total_correct,
            accuracy=telemetry.accuracy,
            current_streak=telemetry.consecutive_correct,
            max_streak=telemetry.max_streak,
            tilt_score=state.coach.tilt_score,
            is_in_recovery=state.coach.is_in_recovery,
            estimated_tier=state.placement.estimated_tier,
            confidence_score=state.placement.confidence_score,
            echo_queue_size=echo_stats["active"],
            echo_resolved=echo_stats["resolved"],
        )

    def aggregate_stats(self, state: OrchestratorState) -> AggregateStats:
        """Whole-session statistics as tracked by the session itself."""

        telemetry = state.learner.telemetry
        return AggregateStats(
            accuracy=telemetry.accuracy,
            total_questions=telemetry.questions_since_start,
            max_streak=telemetry.max_streak,
            tilt_score=state.coach.tilt_score,
        )
