"""Boundary functions the rest of the application calls for practice sessions.

Every call returns either a result model or a :class:`schemas.ServiceError`;
session-level problems are never raised so callers can degrade gracefully
(for example by starting a new session).
"""

from __future__ import annotations

import json
import logging
import os
import random
from typing import Any, Dict, List, Optional, Union

from engine_config import EngineConfig, load_engine_config
from env_validation import get_env_int, validate_environment
from engines.content_variants import Variant, generate_anonymous_items, generate_item
from engines.orchestrator import PracticeOrchestrator, check_answer
from engines.state import OrchestratorState
from schemas import (
    AggregateStats,
    AnswerResult,
    ContentItem,
    HintResult,
    MasteryTest,
    MasteryTestResult,
    MilestoneReward,
    ServiceError,
    SessionEnded,
    SessionStarted,
    SessionStatusReport,
)
from session_store import InMemorySessionStore, SessionStore
from tier_store import SQLiteTierStore, TierStore, TierStoreError, TierUserNotFound
from tier_system import (
    OPERATIONS,
    evaluate_mastery_test,
    get_band_for_tier,
    get_mastery_test_requirements,
    is_mastery_test_available,
)

logger = logging.getLogger(__name__)

ANONYMOUS_PROBLEM_COUNT = 20


def _json_log(event: str, payload: Dict[str, Any]) -> None:
    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    logger.info(message)


def _error(code: str, message: str) -> ServiceError:
    return ServiceError(error=code, message=message)


def _store_error(exc: TierStoreError, user_id: str) -> ServiceError:
    if isinstance(exc, TierUserNotFound):
        logger.warning("Tier record vanished for %s: %s", user_id, exc)
        return _error("UserNotFound", str(exc))
    logger.error("Tier write failed for %s: %s", user_id, exc)
    return _error("PersistenceFailed", str(exc))


def _check_operation(operation: str) -> None:
    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation: {operation}")


class PracticeService:
    """Adaptive practice sessions over injected tier and session stores.

    Two sessions for the same learner and operation are independent; their
    tier writes are last-write-wins at the tier store.
    """

    def __init__(
        self,
        tier_store: TierStore,
        session_store: SessionStore,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
        orchestrator: Optional[PracticeOrchestrator] = None,
    ) -> None:
        self.tier_store = tier_store
        self.session_store = session_store
        self.rng = rng or random.Random()
        self.orchestrator = orchestrator or PracticeOrchestrator(config, self.rng)
        self.config = self.orchestrator.config

    # ------------------------------------------------------------------
    def _load(self, session_id: str, user_id: Optional[str]) -> Union[OrchestratorState, ServiceError]:
        state = self.session_store.get(session_id)
        if state is None or not state.is_active:
            return _error("SessionNotFound", f"Unknown or expired session: {session_id}")
        if user_id is not None and state.user_id != user_id:
            return _error("SessionNotFound", f"Unknown or expired session: {session_id}")
        return state

    # ------------------------------------------------------------------
    def initialize_session(
        self, user_id: Optional[str], operation: str
    ) -> Union[SessionStarted, ServiceError]:
        _check_operation(operation)
        if not user_id:
            return _error("Unauthorized", "An authenticated learner is required")

        tiers = self.tier_store.get_math_tiers(user_id)
        if tiers is None:
            return _error("UserNotFound", f"User not found: {user_id}")

        state = self.orchestrator.initialize(user_id, operation, tiers)
        state, envelope = self.orchestrator.get_next_question(state)
        self.session_store.put(state.session_id, state)

        _json_log(
            "session_start",
            {
                "session_id": state.session_id,
                "user_id": user_id,
                "operation": operation,
                "tier": state.persisted_tier,
            },
        )
        return SessionStarted(
            session_id=state.session_id,
            first_question=envelope.selection.item,
            envelope=envelope,
        )

    def submit_answer(
        self,
        session_id: str,
        user_answer: Any,
        latency_ms: float,
        help_used: bool = False,
        user_id: Optional[str] = None,
    ) -> Union[AnswerResult, ServiceError]:
        loaded = self._load(session_id, user_id)
        if isinstance(loaded, ServiceError):
            return loaded
        state = loaded

        item = state.current_item
        if item is None:
            return _error("NoCurrentQuestion", "No question has been issued in this session")

        is_correct = check_answer(user_answer, item.correct_answer)
        state, hint = self.orchestrator.process_answer(
            state, item, user_answer, is_correct, latency_ms, help_used
        )
        state, envelope = self.orchestrator.get_next_question(state)
        self.session_store.put(session_id, state)

        stats = self.orchestrator.session_stats(state)
        _json_log(
            "answer_submitted",
            {
                "session_id": session_id,
                "question_number": stats.question_number - 1,
                "skill_id": item.skill_id,
                "is_correct": is_correct,
                "latency_ms": latency_ms,
                "tilt_score": round(stats.tilt_score, 3),
                "echo_queue_size": stats.echo_queue_size,
            },
        )
        return AnswerResult(
            is_correct=is_correct,
            correct_answer=item.correct_answer,
            explanation=item.explanation,
            hint=hint,
            next_question=envelope.selection.item,
            envelope=envelope,
            session_stats=stats,
        )

    def request_hint(
        self,
        session_id: str,
        user_answer: Any,
        latency_ms: float,
        problem_text: Optional[str] = None,
        correct_answer: Optional[float] = None,
        user_id: Optional[str] = None,
    ) -> Union[HintResult, ServiceError]:
        """Hint for the current question, or for a recent one matched by its text."""

        loaded = self._load(session_id, user_id)
        if isinstance(loaded, ServiceError):
            return loaded
        state = loaded

        item = state.current_item
        if problem_text is not None:
            matches = [
                recent
                for recent in state.recent_items
                if recent.prompt_text == problem_text
                and (correct_answer is None or check_answer(correct_answer, recent.correct_answer))
            ]
            item = matches[-1] if matches else None
        if item is None:
            return _error("NoCurrentQuestion", "No matching question in this session")

        hint = self.orchestrator.request_hint(state, user_answer, latency_ms, item)
        self.session_store.put(session_id, state)
        return HintResult(hint=hint)

    def end_session(
        self,
        session_id: str,
        aggregate_stats: Optional[AggregateStats] = None,
        user_id: Optional[str] = None,
    ) -> Union[SessionEnded, ServiceError]:
        """Apply the tier-advancement decision and drop the session.

        Without ``aggregate_stats`` the session's own counters are used.
        """

        loaded = self._load(session_id, user_id)
        if isinstance(loaded, ServiceError):
            return loaded
        state = loaded

        stats = aggregate_stats or self.orchestrator.aggregate_stats(state)
        try:
            progression = self.orchestrator.end_session(state, stats, self.tier_store)
        except TierStoreError as exc:
            # the session stays active so the caller can retry
            return _store_error(exc, state.user_id)
        self.session_store.delete(session_id)

        _json_log(
            "session_end",
            {
                "session_id": session_id,
                "user_id": state.user_id,
                "operation": state.operation,
                "accuracy": stats.accuracy,
                "total_questions": stats.total_questions,
                "max_streak": stats.max_streak,
                "tilt_score": stats.tilt_score,
            },
        )
        if progression.advanced or progression.blocked_by_band_boundary:
            _json_log(
                "tier_advanced",
                {
                    "user_id": state.user_id,
                    "operation": state.operation,
                    **progression.model_dump(mode="json"),
                },
            )
        return SessionEnded(tier_progression=progression)

    def get_session_status(self, session_id: str, user_id: Optional[str] = None) -> SessionStatusReport:
        state = self.session_store.get(session_id)
        if state is None or (user_id is not None and state.user_id != user_id):
            return SessionStatusReport(exists=False)
        return SessionStatusReport(
            exists=True,
            question_number=state.question_number,
            tilt_score=state.coach.tilt_score,
            echo_queue_size=len(state.echo.entries),
            is_in_recovery=state.coach.is_in_recovery,
        )

    def anonymous_problems(self, operation: str, count: int = ANONYMOUS_PROBLEM_COUNT) -> List[ContentItem]:
        """Tier-1 items without placement, coaching or echo."""

        _check_operation(operation)
        return generate_anonymous_items(operation, count, self.rng)

    # ------------------------------------------------------------------
    # Mastery tests
    # ------------------------------------------------------------------
    def get_mastery_test(self, user_id: Optional[str], operation: str) -> Union[MasteryTest, ServiceError]:
        _check_operation(operation)
        if not user_id:
            return _error("Unauthorized", "An authenticated learner is required")
        tiers = self.tier_store.get_math_tiers(user_id)
        if tiers is None:
            return _error("UserNotFound", f"User not found: {user_id}")

        tier = tiers.get(operation)
        if not is_mastery_test_available(tier):
            return _error("MasteryTestUnavailable", f"No mastery test at tier {tier}")

        requirements = get_mastery_test_requirements(tier)
        problems: List[ContentItem] = []
        for _ in range(requirements.questions):
            avoid = [p.skill_id for p in problems]
            problems.append(generate_item(operation, tier, Variant.DIRECT, rng=self.rng, avoid=avoid))

        return MasteryTest(
            operation=operation,
            tier=tier,
            questions=requirements.questions,
            required_accuracy=requirements.required_accuracy,
            is_band_crossing=requirements.is_band_crossing,
            problems=problems,
        )

    def complete_mastery_test(
        self, user_id: Optional[str], operation: str, correct: int, total: int
    ) -> Union[MasteryTestResult, ServiceError]:
        _check_operation(operation)
        if not user_id:
            return _error("Unauthorized", "An authenticated learner is required")
        tiers = self.tier_store.get_math_tiers(user_id)
        if tiers is None:
            return _error("UserNotFound", f"User not found: {user_id}")

        tier = tiers.get(operation)
        if not is_mastery_test_available(tier):
            return _error("MasteryTestUnavailable", f"No mastery test at tier {tier}")

        outcome = evaluate_mastery_test(tier, max(0, correct), max(0, total))
        reward = (
            MilestoneReward.from_milestone(outcome.milestone) if outcome.milestone is not None else None
        )
        if outcome.passed and outcome.new_tier != tier:
            try:
                self.tier_store.apply_tier_change(user_id, operation, outcome.new_tier, reward)
            except TierStoreError as exc:
                return _store_error(exc, user_id)

        _json_log(
            "mastery_test_completed",
            {
                "user_id": user_id,
                "operation": operation,
                "tier": tier,
                "passed": outcome.passed,
                "new_tier": outcome.new_tier,
                "accuracy": outcome.accuracy,
            },
        )
        return MasteryTestResult(
            passed=outcome.passed,
            previous_tier=outcome.previous_tier,
            new_tier=outcome.new_tier,
            accuracy=outcome.accuracy,
            required_accuracy=outcome.required_accuracy,
            crossed_band=outcome.crossed_band,
            band_name=get_band_for_tier(outcome.new_tier).name,
            milestone=reward,
        )


def create_default_service() -> PracticeService:
    """Wire a service from the environment: SQLite tiers and an in-process session store."""

    validate_environment()
    config = load_engine_config()
    tier_store = SQLiteTierStore(os.environ["TIER_DB_PATH"])
    session_store = InMemorySessionStore(ttl_seconds=get_env_int("SESSION_TTL_SECONDS", 3600))
    return PracticeService(tier_store, session_store, config)
