import random

import pytest

from engines.content_variants import (
    VARIANT_ORDER,
    Variant,
    build_item,
    compute_result,
    create_skill_id,
    generate_anonymous_items,
    generate_item,
    number_to_words,
    parse_skill_id,
    select_next_variant,
)
from tier_system import OPERATIONS


def test_skill_ids_round_trip_through_parser():
    assert create_skill_id("multiplication", 7, 8) == "mul.7x8"
    assert create_skill_id("division", 42, 7) == "div.42÷7"
    assert parse_skill_id("add.12+30") == ("addition", 12, 30)
    assert parse_skill_id("sub.9-4") == ("subtraction", 9, 4)
    assert parse_skill_id("mul.7x8") == ("multiplication", 7, 8)
    assert parse_skill_id("div.42÷7") == ("division", 42, 7)
    assert parse_skill_id("pow.2^3") is None


def test_compute_result_rejects_uneven_division():
    assert compute_result("division", 42, 7) == 6
    with pytest.raises(ValueError):
        compute_result("division", 43, 7)
    with pytest.raises(ValueError):
        compute_result("modulo", 4, 2)


def test_number_to_words():
    assert number_to_words(7) == "seven"
    assert number_to_words(40) == "forty"
    assert number_to_words(56) == "fifty-six"
    assert number_to_words(305) == "three hundred five"
    assert number_to_words(1200) == "1200"


@pytest.mark.parametrize("variant", list(Variant))
def test_every_variant_keeps_the_fact(variant):
    rng = random.Random(3)
    item = build_item("multiplication", 7, 8, variant, tier=12, rng=rng)

    assert item.skill_id == "mul.7x8"
    assert item.variant == variant.value
    assert item.explanation
    assert 0.0 <= item.difficulty <= 1.0
    if variant in (Variant.DIRECT, Variant.WORD, Variant.VISUAL):
        assert item.correct_answer == 56
    elif variant is Variant.MISSING_OP1:
        assert item.prompt_text == "? × 8 = 56"
        assert item.correct_answer == 7
    elif variant is Variant.MISSING_OP2:
        assert item.prompt_text == "7 × ? = 56"
        assert item.correct_answer == 8
    else:
        assert item.correct_answer in (7, 8)


def test_word_variant_spells_out_operands():
    item = build_item("division", 42, 7, Variant.WORD)
    assert item.prompt_text == "forty-two divided by seven equals"
    assert item.correct_answer == 6


@pytest.mark.parametrize("operation", OPERATIONS)
def test_generated_items_are_valid(operation):
    rng = random.Random(11)
    for tier in (1, 20, 45, 80, 100):
        item = generate_item(operation, tier, rng=rng)
        assert item.operation == operation
        assert item.tier_generated == tier
        assert item.variant == "direct"
        assert compute_result(operation, item.operand1, item.operand2) == item.correct_answer


def test_generate_item_avoids_recent_facts_when_it_can():
    rng = random.Random(5)
    recent = [generate_item("multiplication", 60, rng=rng).skill_id for _ in range(3)]
    for _ in range(10):
        assert generate_item("multiplication", 60, rng=rng, avoid=recent).skill_id not in recent


def test_select_next_variant():
    assert select_next_variant([]) is Variant.DIRECT
    assert select_next_variant(["direct"]) is Variant.MISSING_OP2
    assert select_next_variant(["direct", "missing_op2"]) is Variant.MISSING_OP1
    every = [v.value for v in VARIANT_ORDER]
    assert select_next_variant(every) is Variant.DIRECT
    assert select_next_variant(every + ["direct"]) is Variant.MISSING_OP2


def test_anonymous_items_are_tier_one_direct():
    items = generate_anonymous_items("addition", 20, random.Random(2))
    assert len(items) == 20
    assert all(item.tier_generated == 1 and item.variant == "direct" for item in items)
    assert generate_anonymous_items("addition", 0) == []
