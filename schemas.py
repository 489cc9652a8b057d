"""Pydantic schemas for practice payloads and helper utilities."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

__all__ = [
    "Operation",
    "ContentItem",
    "HintPayload",
    "PlacementDirective",
    "RecoveryDirective",
    "HintPolicy",
    "CoachDirective",
    "EchoDirective",
    "Directives",
    "Selection",
    "AIDirectiveEnvelope",
    "MathTiers",
    "AggregateStats",
    "MilestoneReward",
    "TierProgression",
    "SessionStats",
    "SessionStarted",
    "AnswerResult",
    "HintResult",
    "SessionEnded",
    "SessionStatusReport",
    "MasteryTest",
    "MasteryTestResult",
    "ServiceError",
    "parse_json_safe",
]

Operation = Literal["addition", "subtraction", "multiplication", "division"]


class ContentItem(BaseModel):
    """One generated arithmetic problem. Immutable once produced."""

    item_id: str
    skill_id: str = Field(description="Fact identity, e.g. mul.7x8 or div.42÷7.")
    operation: Operation
    prompt_text: str
    correct_answer: float
    variant: str = "direct"
    tier_generated: int = Field(ge=1, le=100)
    difficulty: float = Field(ge=0.0, le=1.0)
    explanation: str = Field(min_length=1)
    operand1: int
    operand2: int

    model_config = {
        "frozen": True,
    }


class HintPayload(BaseModel):
    hint_text: str
    hint_type: str
    level: int = Field(ge=1)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    is_llm_generated: bool = False
    micro_steps: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Directive envelope
# ---------------------------------------------------------------------------
class PlacementDirective(BaseModel):
    target_difficulty: float = Field(ge=0.0, le=1.0)
    min_difficulty: float = Field(ge=0.0, le=1.0)
    max_difficulty: float = Field(ge=0.0, le=1.0)
    estimated_tier: int = Field(ge=1, le=100)
    confidence_score: float = Field(ge=0.0, le=1.0)


class RecoveryDirective(BaseModel):
    enabled: bool = False
    difficulty_delta: float = 0.0
    easier_tier_offset: int = 0


class HintPolicy(BaseModel):
    on_wrong_answer: bool = True
    on_help_request: bool = True
    auto_hint: bool = False


class CoachDirective(BaseModel):
    tilt_score: float = Field(ge=0.0, le=1.0)
    tilt_detected: bool = False
    mode: Literal["normal", "recovering"] = "normal"
    recovery: RecoveryDirective = Field(default_factory=RecoveryDirective)
    hint_policy: HintPolicy = Field(default_factory=HintPolicy)


class EchoDirective(BaseModel):
    due_count: int = 0
    scheduled_count: int = 0
    resolved_count: int = 0
    due_skill_ids: List[str] = Field(default_factory=list)


class Directives(BaseModel):
    placement: PlacementDirective
    coach: CoachDirective
    echo: EchoDirective


class Selection(BaseModel):
    item: ContentItem
    source: Literal["fresh", "echo", "recovery"] = Field(
        default="fresh",
        description="Whether the item was newly generated, re-presented from the echo queue, or generated below the target tier while recovering.",
    )
    target_tier: int = Field(ge=1, le=100)


class AIDirectiveEnvelope(BaseModel):
    """Per-turn bundle handed to the caller. Never persisted."""

    session_id: str
    question_number: int = Field(ge=0)
    selection: Selection
    directives: Directives


# ---------------------------------------------------------------------------
# Learner persistence
# ---------------------------------------------------------------------------
class MathTiers(BaseModel):
    """Per-operation tiers as stored by the tier store.

    Absent or unparseable values default to tier 1; numeric values clamp to
    ``[1, 100]``.
    """

    addition: int = 1
    subtraction: int = 1
    multiplication: int = 1
    division: int = 1

    model_config = {
        "extra": "ignore",
    }

    @field_validator("addition", "subtraction", "multiplication", "division", mode="before")
    @classmethod
    def _coerce_tier(cls, value: Any) -> int:
        try:
            tier = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 1
        return max(1, min(100, tier))

    def get(self, operation: str) -> int:
        return int(getattr(self, operation, 1))


class AggregateStats(BaseModel):
    """Whole-session statistics supplied by the caller at session end."""

    accuracy: float = Field(ge=0.0, le=1.0)
    total_questions: int = Field(ge=0)
    max_streak: int = Field(default=0, ge=0)
    tilt_score: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Overrides the placement confidence when supplied.",
    )


class MilestoneReward(BaseModel):
    tier: int
    type: Literal["minor", "major", "band_complete"]
    coins: int = 0
    xp: int = 0
    title: Optional[str] = None
    achievement: Optional[str] = None

    @classmethod
    def from_milestone(cls, milestone: Any) -> "MilestoneReward":
        """Build from a ``tier_system.Milestone``."""

        return cls(
            tier=milestone.tier,
            type=milestone.type,
            coins=milestone.coins,
            xp=milestone.xp,
            title=milestone.title,
            achievement=milestone.achievement,
        )


class TierProgression(BaseModel):
    previous_tier: int
    new_tier: int
    advanced: bool
    tiers_gained: int = Field(ge=0)
    band_name: str
    blocked_by_band_boundary: bool = False
    milestone: Optional[MilestoneReward] = None


class SessionStats(BaseModel):
    question_number: int = 0
    questions_answered: int = 0
    correct_answers: int = 0
    accuracy: float = 0.0
    current_streak: int = 0
    max_streak: int = 0
    tilt_score: float = 0.0
    is_in_recovery: bool = False
    estimated_tier: int = 1
    confidence_score: float = 0.0
    echo_queue_size: int = 0
    echo_resolved: int = 0


# ---------------------------------------------------------------------------
# Service results
# ---------------------------------------------------------------------------
class SessionStarted(BaseModel):
    session_id: str
    first_question: ContentItem
    envelope: AIDirectiveEnvelope


class AnswerResult(BaseModel):
    is_correct: bool
    correct_answer: float
    explanation: str
    hint: Optional[HintPayload] = None
    next_question: ContentItem
    envelope: AIDirectiveEnvelope
    session_stats: SessionStats


class HintResult(BaseModel):
    hint: Optional[HintPayload] = None


class SessionEnded(BaseModel):
    tier_progression: TierProgression


class SessionStatusReport(BaseModel):
    exists: bool
    question_number: Optional[int] = None
    tilt_score: Optional[float] = None
    echo_queue_size: Optional[int] = None
    is_in_recovery: Optional[bool] = None


class MasteryTest(BaseModel):
    operation: Operation
    tier: int
    questions: int
    required_accuracy: float
    is_band_crossing: bool
    problems: List[ContentItem]


class MasteryTestResult(BaseModel):
    passed: bool
    previous_tier: int
    new_tier: int
    accuracy: float
    required_accuracy: float
    crossed_band: bool
    band_name: str
    milestone: Optional[MilestoneReward] = None


class ServiceError(BaseModel):
    """Discriminated error result returned instead of raising."""

    error: Literal[
        "Unauthorized",
        "UserNotFound",
        "SessionNotFound",
        "NoCurrentQuestion",
        "MasteryTestUnavailable",
        "PersistenceFailed",
    ]
    message: str = ""


_T = TypeVar("_T", bound=BaseModel)


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except ValueError:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model`` with a fallback JSON extraction pass.

    Stored payloads sometimes carry a prefix (a BOM, a log tag); the fallback
    pass validates the first balanced JSON object instead.
    """

    first_error: Exception | None = None
    try:
        return model.model_validate_json(text)
    except (ValidationError, ValueError, TypeError) as exc:
        first_error = exc

    try:
        snippet, _, end = _find_first_json_object(text)
    except ValueError:
        if first_error:
            raise first_error
        raise

    trailing = text[end:]
    if trailing.strip():
        if isinstance(first_error, ValidationError):
            raise first_error
        raise ValueError("Trailing content detected after JSON object")

    return model.model_validate_json(snippet)
