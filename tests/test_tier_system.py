import random

import pytest

from engine_config import AdvancementConfig
from tier_system import (
    BANDS,
    MAX_TIER,
    MIN_TIER,
    AdvancementRung,
    apply_band_cap,
    calculate_tier_advancement,
    can_attempt_band_promotion,
    check_milestone_reward,
    clamp_tier,
    crosses_band_boundary,
    difficulty_to_tier,
    evaluate_mastery_test,
    format_tier_display,
    format_tier_short,
    generate_operands,
    get_all_milestones_crossed,
    get_band_for_tier,
    get_mastery_test_requirements,
    get_milestones,
    get_next_band_boundary,
    get_next_mastery_test_tier,
    get_progress_within_band,
    get_tier_operand_range,
    get_tier_within_band,
    is_at_band_boundary,
    is_mastery_test_available,
    migrate_math_tiers,
    migrate_tier,
    propose_tier_advancement,
    tier_to_difficulty,
)

ALL_TIERS = range(MIN_TIER, MAX_TIER + 1)


def test_every_tier_belongs_to_exactly_one_band():
    for tier in ALL_TIERS:
        owners = [band for band in BANDS if band.lower <= tier <= band.upper]
        assert len(owners) == 1
        assert get_band_for_tier(tier) is owners[0]
        assert 1 <= get_tier_within_band(tier) <= 20
        assert 0.0 <= get_progress_within_band(tier) <= 1.0


def test_band_boundaries_and_out_of_range_tiers():
    assert [t for t in ALL_TIERS if is_at_band_boundary(t)] == [20, 40, 60, 80, 100]
    assert get_band_for_tier(0).name == "Foundation"
    assert get_band_for_tier(150).name == "Master"
    assert crosses_band_boundary(20, 21)
    assert not crosses_band_boundary(21, 40)
    assert [get_next_band_boundary(t) for t in (1, 20, 21, 77, 100)] == [20, 20, 40, 80, 100]
    assert clamp_tier(0) == 1
    assert clamp_tier(250) == 100
    assert clamp_tier("not a tier") == 1
    assert clamp_tier(float("inf")) == 100
    assert clamp_tier(float("-inf")) == 1
    assert clamp_tier(float("nan")) == 1
    assert clamp_tier(45.7) == 45
    assert get_band_for_tier(float("inf")).name == "Master"


def test_difficulty_mapping_round_trips_every_tier():
    assert tier_to_difficulty(1) == pytest.approx(0.05)
    assert tier_to_difficulty(100) == pytest.approx(0.95)
    for tier in ALL_TIERS:
        assert difficulty_to_tier(tier_to_difficulty(tier)) == tier
    assert difficulty_to_tier(-1.0) == 1
    assert difficulty_to_tier(2.0) == 100


def test_operand_ranges_are_ordered_and_grow_with_tier():
    previous_max = 0
    for tier in ALL_TIERS:
        low, high = get_tier_operand_range(tier)
        assert 1 <= low <= high
        assert high >= previous_max
        previous_max = high

        div_low, div_high = get_tier_operand_range(tier, "division")
        assert div_low <= div_high
        assert div_low <= low and div_high <= high


def test_generated_operands_are_well_formed():
    rng = random.Random(7)
    for tier in (1, 15, 37, 58, 73, 99):
        for _ in range(20):
            sub = generate_operands(tier, "subtraction", rng)
            assert sub.answer == sub.op1 - sub.op2 >= 0

            div = generate_operands(tier, "division", rng)
            assert div.op1 % div.op2 == 0
            assert div.answer == div.op1 // div.op2

            mul = generate_operands(tier, "multiplication", rng)
            low, high = get_tier_operand_range(tier)
            assert low <= mul.op1 <= high and low <= mul.op2 <= high

    with pytest.raises(ValueError):
        generate_operands(10, "exponentiation", rng)


def test_display_helpers():
    assert format_tier_display(15) == "Foundation 15"
    assert format_tier_display(41) == "Advanced 1"
    assert format_tier_short(45) == "A5"
    assert format_tier_short(100) == "M20"


def test_milestone_table():
    milestones = get_milestones()
    assert len(milestones) == 20
    assert [m.tier for m in milestones if m.type == "band_complete"] == [20, 40, 60, 80, 100]
    assert all(m.coins == 150 for m in milestones if m.type == "major")
    milestones.clear()
    assert len(get_milestones()) == 20


def test_milestones_up_to_first_band_boundary():
    crossed = get_all_milestones_crossed(1, 20)
    assert [m.tier for m in crossed] == [5, 10, 15, 20]
    assert [m.type for m in crossed] == ["minor", "major", "minor", "band_complete"]

    reward = check_milestone_reward(1, 20)
    assert reward.type == "band_complete"
    assert reward.title == "Foundation Graduate"
    assert reward.achievement == "band_foundation_complete"

    assert check_milestone_reward(12, 14) is None
    assert check_milestone_reward(20, 18) is None
    assert check_milestone_reward(29, 31).type == "major"


@pytest.mark.parametrize(
    "accuracy, confidence, streak, expected",
    [
        (0.96, 0.95, 12, 3),
        (0.92, 0.86, 8, 2),
        (0.96, 0.86, 12, 2),
        (0.86, 0.81, 5, 1),
        (0.96, 0.70, 12, 0),
        (0.90, 0.95, 4, 0),
    ],
)
def test_advancement_rungs(accuracy, confidence, streak, expected):
    assert propose_tier_advancement(accuracy, confidence, 20, streak, 0.1) == expected


def test_advancement_gate():
    assert propose_tier_advancement(0.99, 0.99, 9, 9, 0.0) == 0
    assert propose_tier_advancement(0.84, 0.99, 20, 15, 0.0) == 0
    assert propose_tier_advancement(0.99, 0.99, 20, 15, 0.5) == 0
    assert propose_tier_advancement(0.99, 0.99, 20, 15, 0.49) == 3


def test_advancement_uses_configured_rungs():
    config = AdvancementConfig(
        min_questions=5,
        rungs=(AdvancementRung(tiers=1, min_accuracy=0.5, min_confidence=0.5, min_streak=1),),
    )
    assert propose_tier_advancement(0.9, 0.6, 5, 2, 0.0, config) == 1
    assert propose_tier_advancement(0.9, 0.6, 5, 2, 0.0) == 0


def test_band_cap():
    assert apply_band_cap(50, 3) == (53, False)
    assert apply_band_cap(59, 3) == (60, True)
    assert apply_band_cap(60, 1) == (60, True)
    assert apply_band_cap(98, 3) == (100, False)
    assert apply_band_cap(100, 2) == (100, False)
    assert apply_band_cap(37, 0) == (37, False)

    assert calculate_tier_advancement(0.96, 0.95, 20, 12, 0.0, 59) == 1
    assert calculate_tier_advancement(0.96, 0.95, 20, 12, 0.0, 50) == 3


def test_band_cap_never_leaves_the_band():
    for tier in ALL_TIERS:
        for gain in range(0, 4):
            new_tier, _ = apply_band_cap(tier, gain)
            assert get_band_for_tier(new_tier) is get_band_for_tier(tier)
            assert tier <= new_tier <= MAX_TIER


def test_mastery_test_availability_and_requirements():
    assert [t for t in ALL_TIERS if is_mastery_test_available(t)] == list(range(10, 101, 10))

    regular = get_mastery_test_requirements(30)
    assert (regular.questions, regular.required_accuracy, regular.is_band_crossing) == (5, 0.80, False)
    crossing = get_mastery_test_requirements(40)
    assert (crossing.questions, crossing.required_accuracy, crossing.is_band_crossing) == (10, 0.90, True)

    assert get_next_mastery_test_tier(13) == 20
    assert get_next_mastery_test_tier(20) == 30
    assert get_next_mastery_test_tier(99) == 100
    assert can_attempt_band_promotion(40)
    assert not can_attempt_band_promotion(100)
    assert not can_attempt_band_promotion(30)


def test_evaluate_mastery_test():
    crossed = evaluate_mastery_test(20, 9, 10)
    assert crossed.passed and crossed.crossed_band
    assert crossed.new_tier == 21

    failed = evaluate_mastery_test(20, 8, 10)
    assert not failed.passed
    assert failed.new_tier == 20

    regular = evaluate_mastery_test(10, 4, 5)
    assert regular.passed and not regular.crossed_band
    assert regular.new_tier == 20
    assert regular.milestone.type == "band_complete"

    assert not evaluate_mastery_test(100, 10, 10).passed
    assert evaluate_mastery_test(30, 0, 0).accuracy == 0.0


def test_legacy_migration():
    assert [migrate_tier(old) for old in range(5)] == [1, 5, 21, 41, 61]
    assert migrate_tier(9) == 1
    assert migrate_math_tiers({"multiplication": 3}) == {
        "addition": 1,
        "subtraction": 1,
        "multiplication": 41,
        "division": 1,
    }
