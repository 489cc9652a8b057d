"""Arithmetic item generation with varied presentations of the same fact.

A fact (``skill_id``) can be shown as ``7 × 8 = ?``, ``? × 8 = 56``,
``seven groups of eight equals``, ``Solve: 7x = 56`` and so on. Re-showing a
missed fact in a different form keeps learners from memorising the prompt
instead of the fact.
"""

from __future__ import annotations

import logging
import random
import re
import uuid
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from schemas import ContentItem
from tier_system import MIN_TIER, clamp_tier, generate_operands

_LOGGER = logging.getLogger(__name__)

MAX_AVOID_ATTEMPTS = 10


class Variant(str, Enum):
    DIRECT = "direct"
    MISSING_OP1 = "missing_op1"
    MISSING_OP2 = "missing_op2"
    WORD = "word"
    ALGEBRAIC = "algebraic"
    VISUAL = "visual"


VARIANT_ORDER: Tuple[Variant, ...] = (
    Variant.DIRECT,
    Variant.MISSING_OP2,
    Variant.MISSING_OP1,
    Variant.WORD,
    Variant.ALGEBRAIC,
    Variant.VISUAL,
)

OPERATION_SYMBOLS = {
    "addition": "+",
    "subtraction": "-",
    "multiplication": "×",
    "division": "÷",
}

_SKILL_PREFIX = {
    "addition": ("add", "+"),
    "subtraction": ("sub", "-"),
    "multiplication": ("mul", "x"),
    "division": ("div", "÷"),
}

_SKILL_PATTERNS = (
    ("multiplication", re.compile(r"^mul\.(\d+)x(\d+)$")),
    ("addition", re.compile(r"^add\.(\d+)\+(\d+)$")),
    ("subtraction", re.compile(r"^sub\.(\d+)-(\d+)$")),
    ("division", re.compile(r"^div\.(\d+)÷(\d+)$")),
)

_SMALL_WORDS = (
    "zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine",
    "ten", "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen",
    "seventeen", "eighteen", "nineteen",
)
_TENS_WORDS = {
    2: "twenty", 3: "thirty", 4: "forty", 5: "fifty",
    6: "sixty", 7: "seventy", 8: "eighty", 9: "ninety",
}


# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------
def compute_result(operation: str, op1: int, op2: int) -> int:
    if operation == "addition":
        return op1 + op2
    if operation == "subtraction":
        return op1 - op2
    if operation == "multiplication":
        return op1 * op2
    if operation == "division":
        if op2 == 0 or op1 % op2:
            raise ValueError(f"{op1} ÷ {op2} does not divide evenly")
        return op1 // op2
    raise ValueError(f"Unknown operation: {operation}")


def create_skill_id(operation: str, op1: int, op2: int) -> str:
    try:
        prefix, joiner = _SKILL_PREFIX[operation]
    except KeyError as exc:
        raise ValueError(f"Unknown operation: {operation}") from exc
    return f"{prefix}.{op1}{joiner}{op2}"


def parse_skill_id(skill_id: str) -> Optional[Tuple[str, int, int]]:
    """Return ``(operation, op1, op2)`` for ``skill_id`` or ``None``."""

    for operation, pattern in _SKILL_PATTERNS:
        match = pattern.match(skill_id)
        if match:
            return operation, int(match.group(1)), int(match.group(2))
    return None


def number_to_words(n: int) -> str:
    """Spell out ``n`` for 0-999; larger or negative numbers stay numeric."""

    if n < 0 or n >= 1000:
        return str(n)
    if n < 20:
        return _SMALL_WORDS[n]
    if n < 100:
        tens, ones = divmod(n, 10)
        return _TENS_WORDS[tens] if ones == 0 else f"{_TENS_WORDS[tens]}-{_SMALL_WORDS[ones]}"
    hundreds, remainder = divmod(n, 100)
    if remainder == 0:
        return f"{_SMALL_WORDS[hundreds]} hundred"
    return f"{_SMALL_WORDS[hundreds]} hundred {number_to_words(remainder)}"


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------
def _render(
    variant: Variant,
    operation: str,
    op1: int,
    op2: int,
    result: int,
    rng: random.Random,
) -> Tuple[str, int]:
    symbol = OPERATION_SYMBOLS[operation]

    if variant is Variant.MISSING_OP1:
        return f"? {symbol} {op2} = {result}", op1
    if variant is Variant.MISSING_OP2:
        return f"{op1} {symbol} ? = {result}", op2

    if variant is Variant.WORD:
        w1, w2 = number_to_words(op1), number_to_words(op2)
        phrases = {
            "addition": [f"{w1} plus {w2} equals"],
            "subtraction": [f"{w1} minus {w2} equals"],
            "multiplication": [
                f"{w1} groups of {w2} equals",
                f"{w1} times {w2} is",
                f"What is {w1} multiplied by {w2}?",
            ],
            "division": [f"{w1} divided by {w2} equals"],
        }[operation]
        return rng.choice(phrases), result

    if variant is Variant.ALGEBRAIC:
        solve_second = rng.random() >= 0.5
        if operation == "multiplication":
            if solve_second:
                return f"Solve: {op1}x = {result}", op2
            return f"Solve: x × {op2} = {result}", op1
        if operation == "subtraction" and not solve_second:
            return f"If x - {op2} = {result}, what is x?", op1
        if solve_second:
            return f"Solve: {op1} {symbol} x = {result}", op2
        return f"Solve: x {symbol} {op2} = {result}", op1

    if variant is Variant.VISUAL:
        if operation == "multiplication":
            return rng.choice(
                [
                    f"{op1} rows with {op2} items each = ?",
                    f"An array of {op1} by {op2} has how many items?",
                    f"{op1} boxes of {op2} cookies = ?",
                ]
            ), result
        if operation == "addition":
            return f"{op1} items and {op2} more items = ?", result
        if operation == "subtraction":
            return f"{op1} items, take away {op2} = ?", result
        return f"{op1} items split into {op2} equal groups = ? per group", result

    return f"{op1} {symbol} {op2} = ?", result


def explain(operation: str, op1: int, op2: int, result: int) -> str:
    """Short feedback sentence shown after the learner answers."""

    if operation == "multiplication":
        return (
            f"{op1} × {op2} means {op1} groups of {op2}, which equals {result}. "
            f"You can think of it as adding {op2} a total of {op1} times."
        )
    if operation == "addition":
        return f"{op1} + {op2} means combining {op1} and {op2} together, giving {result}."
    if operation == "subtraction":
        return f"{op1} - {op2} means starting with {op1} and taking away {op2}, leaving {result}."
    return (
        f"{op1} ÷ {op2} means splitting {op1} into {op2} equal groups. "
        f"Each group has {result}."
    )


def estimate_item_difficulty(operation: str, op1: int, op2: int, variant: Variant) -> float:
    """Heuristic surface difficulty of a single item in ``[0, 1]``."""

    difficulty = 0.3
    largest = max(op1, op2)
    if largest > 10:
        difficulty += 0.2
    if largest > 20:
        difficulty += 0.2
    if largest > 50:
        difficulty += 0.1
    if operation == "division":
        difficulty += 0.1
    if operation == "multiplication" and op1 > 5 and op2 > 5:
        difficulty += 0.1

    if variant in (Variant.MISSING_OP1, Variant.MISSING_OP2):
        difficulty += 0.1
    elif variant is Variant.ALGEBRAIC:
        difficulty += 0.15
    elif variant in (Variant.WORD, Variant.VISUAL):
        difficulty += 0.05
    return min(1.0, difficulty)


# ---------------------------------------------------------------------------
# Public builders
# ---------------------------------------------------------------------------
def build_item(
    operation: str,
    op1: int,
    op2: int,
    variant: Variant | str = Variant.DIRECT,
    tier: int = MIN_TIER,
    rng: Optional[random.Random] = None,
) -> ContentItem:
    """Build an item for a known fact, e.g. to re-present a missed one."""

    variant = Variant(variant)
    rng = rng or random.Random()
    result = compute_result(operation, op1, op2)
    prompt, answer = _render(variant, operation, op1, op2, result, rng)
    return ContentItem(
        item_id=uuid.uuid4().hex,
        skill_id=create_skill_id(operation, op1, op2),
        operation=operation,
        prompt_text=prompt,
        correct_answer=float(answer),
        variant=variant.value,
        tier_generated=clamp_tier(tier),
        difficulty=estimate_item_difficulty(operation, op1, op2, variant),
        explanation=explain(operation, op1, op2, result),
        operand1=op1,
        operand2=op2,
    )


def generate_item(
    operation: str,
    tier: int,
    variant: Variant | str = Variant.DIRECT,
    rng: Optional[random.Random] = None,
    avoid: Iterable[str] = (),
) -> ContentItem:
    """Draw a fresh fact at ``tier`` and render it.

    Facts whose ``skill_id`` is in ``avoid`` are redrawn up to
    ``MAX_AVOID_ATTEMPTS`` times; the last draw is kept regardless so
    narrow low-tier ranges still produce an item.
    """

    rng = rng or random.Random()
    avoid_set = set(avoid)
    tier = clamp_tier(tier)

    operands = generate_operands(tier, operation, rng)
    for _ in range(MAX_AVOID_ATTEMPTS - 1):
        if create_skill_id(operation, operands.op1, operands.op2) not in avoid_set:
            break
        operands = generate_operands(tier, operation, rng)
    else:
        _LOGGER.debug("Could not avoid recent facts for %s at tier %s", operation, tier)

    return build_item(operation, operands.op1, operands.op2, variant, tier, rng)


def select_next_variant(used: Sequence[Variant | str]) -> Variant:
    """Return the first presentation not yet used, else anything but the last."""

    used_variants = [Variant(v) for v in used]
    for variant in VARIANT_ORDER:
        if variant not in used_variants:
            return variant
    last = used_variants[-1] if used_variants else None
    for variant in VARIANT_ORDER:
        if variant is not last:
            return variant
    return Variant.DIRECT


def generate_anonymous_items(
    operation: str,
    count: int,
    rng: Optional[random.Random] = None,
) -> List[ContentItem]:
    """Tier-1 direct items for practice without an identity."""

    rng = rng or random.Random()
    items: List[ContentItem] = []
    seen: List[str] = []
    for _ in range(max(0, count)):
        item = generate_item(operation, MIN_TIER, Variant.DIRECT, rng=rng, avoid=seen[-5:])
        seen.append(item.skill_id)
        items.append(item)
    return items
