"""100-tier difficulty model organised into five 20-tier bands.

Bands partition the tier axis without gaps:

- Foundation (1-20): basic facts, single-digit operations
- Intermediate (21-40): extended facts, missing operands
- Advanced (41-60): multi-digit operations
- Expert (61-80): complex multi-digit
- Master (81-100): speed mastery

Everything in this module is a pure function of its arguments so the
advancement and band-capping rules can be tested without a session.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

MIN_TIER = 1
MAX_TIER = 100
TIERS_PER_BAND = 20
TOTAL_BANDS = 5

MIN_DIFFICULTY = 0.05
MAX_DIFFICULTY = 0.95

OPERATIONS: Tuple[str, ...] = ("addition", "subtraction", "multiplication", "division")


@dataclass(frozen=True)
class Band:
    """Immutable description of one 20-tier band."""

    id: int
    name: str
    short_name: str
    tier_range: Tuple[int, int]
    color: str
    operand_range_start: Tuple[int, int]
    operand_range_end: Tuple[int, int]
    features: Tuple[str, ...]

    @property
    def lower(self) -> int:
        return self.tier_range[0]

    @property
    def upper(self) -> int:
        return self.tier_range[1]


BANDS: Tuple[Band, ...] = (
    Band(
        id=1,
        name="Foundation",
        short_name="F",
        tier_range=(1, 20),
        color="amber",
        operand_range_start=(2, 5),
        operand_range_end=(2, 12),
        features=("Basic facts", "Single-digit operations", "Core multiplication tables"),
    ),
    Band(
        id=2,
        name="Intermediate",
        short_name="I",
        tier_range=(21, 40),
        color="slate",
        operand_range_start=(2, 12),
        operand_range_end=(10, 25),
        features=("Extended facts", "Variable introduction", "Missing operand problems"),
    ),
    Band(
        id=3,
        name="Advanced",
        short_name="A",
        tier_range=(41, 60),
        color="yellow",
        operand_range_start=(10, 25),
        operand_range_end=(20, 99),
        features=("Multi-digit operations", "2-digit x 2-digit", "Word problems"),
    ),
    Band(
        id=4,
        name="Expert",
        short_name="E",
        tier_range=(61, 80),
        color="cyan",
        operand_range_start=(20, 99),
        operand_range_end=(100, 500),
        features=("Complex multi-digit", "3-digit operations", "Algebraic notation"),
    ),
    Band(
        id=5,
        name="Master",
        short_name="M",
        tier_range=(81, 100),
        color="purple",
        operand_range_start=(100, 500),
        operand_range_end=(200, 1000),
        features=("Speed mastery", "Competition-level", "Mixed operations"),
    ),
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_tier(tier: float) -> int:
    """Clamp ``tier`` into ``[MIN_TIER, MAX_TIER]`` and coerce to ``int``."""

    try:
        numeric = float(tier)
    except (TypeError, ValueError):
        return MIN_TIER
    if math.isnan(numeric) or numeric <= MIN_TIER:
        return MIN_TIER
    if numeric >= MAX_TIER:
        return MAX_TIER
    return int(numeric)


# ---------------------------------------------------------------------------
# Bands
# ---------------------------------------------------------------------------
def get_band_for_tier(tier: float) -> Band:
    """Return the band owning ``tier``; out-of-range tiers clamp first."""

    clamped = clamp_tier(tier)
    index = (clamped - 1) // TIERS_PER_BAND
    return BANDS[min(index, len(BANDS) - 1)]


def get_tier_within_band(tier: float) -> int:
    """Return the 1-based position of ``tier`` inside its band (1-20)."""

    clamped = clamp_tier(tier)
    return clamped - get_band_for_tier(clamped).lower + 1


def get_progress_within_band(tier: float) -> float:
    """Return progress through the band as a value in ``[0, 1]``."""

    return (get_tier_within_band(tier) - 1) / (TIERS_PER_BAND - 1)


def is_at_band_boundary(tier: int) -> bool:
    """Boundary tiers are exactly the band upper bounds (20, 40, 60, 80, 100)."""

    return MIN_TIER <= tier <= MAX_TIER and tier % TIERS_PER_BAND == 0


def crosses_band_boundary(previous_tier: int, new_tier: int) -> bool:
    return get_band_for_tier(new_tier).id > get_band_for_tier(previous_tier).id


def get_next_band_boundary(tier: int) -> int:
    return get_band_for_tier(tier).upper


# ---------------------------------------------------------------------------
# Difficulty mapping
# ---------------------------------------------------------------------------
def tier_to_difficulty(tier: float) -> float:
    """Map a tier onto the continuous difficulty axis ``[0.05, 0.95]``."""

    clamped = max(MIN_TIER, min(MAX_TIER, float(tier)))
    span = MAX_DIFFICULTY - MIN_DIFFICULTY
    return MIN_DIFFICULTY + ((clamped - MIN_TIER) / (MAX_TIER - MIN_TIER)) * span


def difficulty_to_tier(difficulty: float) -> int:
    """Inverse of :func:`tier_to_difficulty`, rounded to the nearest tier."""

    clamped = max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, float(difficulty)))
    span = MAX_DIFFICULTY - MIN_DIFFICULTY
    tier = _round_half_up(((clamped - MIN_DIFFICULTY) / span) * (MAX_TIER - MIN_TIER) + MIN_TIER)
    return clamp_tier(tier)


# ---------------------------------------------------------------------------
# Operand ranges
# ---------------------------------------------------------------------------
def _lerp(start: int, end: int, t: float) -> int:
    return _round_half_up(start + (end - start) * t)


def get_tier_operand_range(tier: float, operation: Optional[str] = None) -> Tuple[int, int]:
    """Return ``(min_operand, max_operand)`` for ``tier``.

    Ranges interpolate linearly between the band's start and end ranges.
    Division uses halved bounds so divisor and quotient stay small enough for
    a clean integer answer; the result never exceeds the bounds the other
    operations get at the same tier.
    """

    band = get_band_for_tier(tier)
    progress = get_progress_within_band(tier)

    min_op = _lerp(band.operand_range_start[0], band.operand_range_end[0], progress)
    max_op = _lerp(band.operand_range_start[1], band.operand_range_end[1], progress)

    if operation == "division":
        div_min = max(2, min_op // 2)
        div_max = max(div_min + 2, max_op // 2)
        return min(div_min, min_op), min(div_max, max_op)

    return min_op, max_op


@dataclass(frozen=True)
class Operands:
    op1: int
    op2: int
    answer: int


def generate_operands(
    tier: float,
    operation: str,
    rng: Optional[random.Random] = None,
) -> Operands:
    """Draw a fact for ``operation`` from the operand range of ``tier``.

    Subtraction never produces a negative answer and division always divides
    evenly (the dividend is built as ``divisor * quotient``).
    """

    rng = rng or random
    low, high = get_tier_operand_range(tier, operation)

    if operation == "subtraction":
        first = rng.randint(low, high)
        second = rng.randint(low, high)
        if second > first:
            first, second = second, first
        return Operands(first, second, first - second)

    if operation == "multiplication":
        op1 = rng.randint(low, high)
        op2 = rng.randint(low, high)
        return Operands(op1, op2, op1 * op2)

    if operation == "division":
        divisor = rng.randint(low, high)
        quotient = rng.randint(low, high)
        return Operands(divisor * quotient, divisor, quotient)

    if operation != "addition":
        raise ValueError(f"Unknown operation: {operation}")

    op1 = rng.randint(low, high)
    op2 = rng.randint(low, high)
    return Operands(op1, op2, op1 + op2)


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------
def format_tier_display(tier: int) -> str:
    """Return e.g. ``"Foundation 15"``."""

    return f"{get_band_for_tier(tier).name} {get_tier_within_band(tier)}"


def format_tier_short(tier: int) -> str:
    """Return e.g. ``"F15"``."""

    return f"{get_band_for_tier(tier).short_name}{get_tier_within_band(tier)}"


# ---------------------------------------------------------------------------
# Legacy migration (4-tier scheme)
# ---------------------------------------------------------------------------
_LEGACY_TIER_MAP: Dict[int, int] = {0: 1, 1: 5, 2: 21, 3: 41, 4: 61}


def migrate_tier(old_tier: int) -> int:
    """Map a legacy 0-4 tier onto the start of the equivalent band."""

    return _LEGACY_TIER_MAP.get(old_tier, MIN_TIER)


def migrate_math_tiers(old_tiers: Mapping[str, int]) -> Dict[str, int]:
    return {op: migrate_tier(int(old_tiers.get(op) or 0)) for op in OPERATIONS}


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Milestone:
    tier: int
    type: str  # 'minor', 'major', 'band_complete'
    coins: int
    xp: int = 0
    title: Optional[str] = None
    achievement: Optional[str] = None


def _build_milestones() -> Tuple[Milestone, ...]:
    milestones: List[Milestone] = []
    for tier in range(5, MAX_TIER + 1, 5):
        if tier % TIERS_PER_BAND == 0:
            band = BANDS[tier // TIERS_PER_BAND - 1]
            milestones.append(
                Milestone(
                    tier=tier,
                    type="band_complete",
                    coins=500,
                    xp=500,
                    title=f"{band.name} Graduate",
                    achievement=f"band_{band.name.lower()}_complete",
                )
            )
        elif tier % 10 == 0:
            milestones.append(Milestone(tier=tier, type="major", coins=150, xp=100))
        else:
            milestones.append(Milestone(tier=tier, type="minor", coins=50))
    return tuple(milestones)


_MILESTONES = _build_milestones()


def get_milestones() -> List[Milestone]:
    """Return all milestones sorted by tier."""

    return list(_MILESTONES)


def get_all_milestones_crossed(previous_tier: int, new_tier: int) -> List[Milestone]:
    """Return every milestone in ``(previous_tier, new_tier]``."""

    if new_tier <= previous_tier:
        return []
    return [m for m in _MILESTONES if previous_tier < m.tier <= new_tier]


def check_milestone_reward(previous_tier: int, new_tier: int) -> Optional[Milestone]:
    """Return the single highest milestone in ``(previous_tier, new_tier]``."""

    crossed = get_all_milestones_crossed(previous_tier, new_tier)
    return crossed[-1] if crossed else None


# ---------------------------------------------------------------------------
# Mastery tests
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class MasteryTestRequirements:
    questions: int
    required_accuracy: float
    is_band_crossing: bool


@dataclass(frozen=True)
class MasteryTestOutcome:
    passed: bool
    previous_tier: int
    new_tier: int
    accuracy: float
    required_accuracy: float
    crossed_band: bool
    milestone: Optional[Milestone] = None


def is_mastery_test_available(tier: int) -> bool:
    """Mastery tests are offered at every multiple of 10."""

    return MIN_TIER <= tier <= MAX_TIER and tier % 10 == 0


def get_mastery_test_requirements(tier: int) -> MasteryTestRequirements:
    crossing = is_at_band_boundary(tier)
    if crossing:
        return MasteryTestRequirements(questions=10, required_accuracy=0.90, is_band_crossing=True)
    return MasteryTestRequirements(questions=5, required_accuracy=0.80, is_band_crossing=False)


def get_next_mastery_test_tier(current_tier: int) -> int:
    return min(MAX_TIER, int(math.ceil((current_tier + 1) / 10.0)) * 10)


def can_attempt_band_promotion(current_tier: int) -> bool:
    return is_at_band_boundary(current_tier) and current_tier < MAX_TIER


def evaluate_mastery_test(current_tier: int, correct: int, total: int) -> MasteryTestOutcome:
    """Score a finished mastery test and compute the resulting tier.

    A pass at a band boundary moves the learner to the first tier of the next
    band; a pass elsewhere moves to the next mastery-test tier.
    """

    current_tier = clamp_tier(current_tier)
    requirements = get_mastery_test_requirements(current_tier)
    accuracy = (correct / total) if total > 0 else 0.0
    passed = accuracy >= requirements.required_accuracy and current_tier < MAX_TIER

    if not passed:
        return MasteryTestOutcome(
            passed=False,
            previous_tier=current_tier,
            new_tier=current_tier,
            accuracy=accuracy,
            required_accuracy=requirements.required_accuracy,
            crossed_band=False,
        )

    if requirements.is_band_crossing:
        new_tier = min(MAX_TIER, get_band_for_tier(current_tier).upper + 1)
    else:
        new_tier = get_next_mastery_test_tier(current_tier)

    return MasteryTestOutcome(
        passed=True,
        previous_tier=current_tier,
        new_tier=new_tier,
        accuracy=accuracy,
        required_accuracy=requirements.required_accuracy,
        crossed_band=requirements.is_band_crossing,
        milestone=check_milestone_reward(current_tier, new_tier),
    )


# ---------------------------------------------------------------------------
# Session-end advancement
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AdvancementRung:
    """One rung of the advancement ladder: all thresholds must be met."""

    tiers: int
    min_accuracy: float
    min_confidence: float
    min_streak: int


DEFAULT_ADVANCEMENT_RUNGS: Tuple[AdvancementRung, ...] = (
    AdvancementRung(tiers=3, min_accuracy=0.95, min_confidence=0.90, min_streak=10),
    AdvancementRung(tiers=2, min_accuracy=0.90, min_confidence=0.85, min_streak=8),
    AdvancementRung(tiers=1, min_accuracy=0.85, min_confidence=0.80, min_streak=5),
)


def apply_band_cap(current_tier: int, advancement: int) -> Tuple[int, bool]:
    """Apply ``advancement`` to ``current_tier`` without leaving the band.

    Returns ``(new_tier, blocked)``; ``blocked`` is true when the proposed
    tier would have crossed into the next band and was truncated to land on
    the boundary tier instead. Tier 100 has no next band, so it caps without
    blocking.
    """

    current_tier = clamp_tier(current_tier)
    if advancement <= 0:
        return current_tier, False

    proposed = current_tier + advancement
    boundary = get_next_band_boundary(current_tier)
    if proposed > boundary:
        return boundary, boundary < MAX_TIER
    return proposed, False


def propose_tier_advancement(
    accuracy: float,
    confidence: float,
    total_questions: int,
    max_streak: int,
    tilt_score: float,
    config=None,
) -> int:
    """Return the uncapped advancement (0-3) a session's statistics earn.

    ``config`` is an optional ``engine_config.AdvancementConfig``; when omitted
    the default gate (10 questions, 85% accuracy, tilt below 0.5) and the
    default rungs apply.
    """

    min_questions = getattr(config, "min_questions", 10)
    min_accuracy = getattr(config, "min_accuracy", 0.85)
    max_tilt = getattr(config, "max_tilt", 0.5)
    rungs: Sequence[AdvancementRung] = getattr(config, "rungs", DEFAULT_ADVANCEMENT_RUNGS)

    if total_questions < min_questions or accuracy < min_accuracy or tilt_score >= max_tilt:
        return 0

    for rung in sorted(rungs, key=lambda r: r.tiers, reverse=True):
        if (
            accuracy >= rung.min_accuracy
            and confidence >= rung.min_confidence
            and max_streak >= rung.min_streak
        ):
            return rung.tiers
    return 0


def calculate_tier_advancement(
    accuracy: float,
    confidence: float,
    total_questions: int,
    max_streak: int,
    tilt_score: float,
    current_tier: int,
    config=None,
) -> int:
    """Return how many tiers a session earns once capped at the band boundary."""

    proposed = propose_tier_advancement(
        accuracy, confidence, total_questions, max_streak, tilt_score, config
    )
    new_tier, _ = apply_band_cap(current_tier, proposed)
    return new_tier - clamp_tier(current_tier)
