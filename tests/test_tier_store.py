import pytest

from schemas import MathTiers, MilestoneReward
from tier_store import InMemoryTierStore, LEGACY_TIER_SCHEME, TierStoreError
from tier_system import check_milestone_reward

BAND_REWARD = MilestoneReward.from_milestone(check_milestone_reward(19, 20))


def test_sqlite_unknown_user(temp_tier_db):
    assert temp_tier_db.get_math_tiers("ghost") is None
    assert temp_tier_db.get_user("ghost") is None
    with pytest.raises(TierStoreError):
        temp_tier_db.apply_tier_change("ghost", "addition", 5)


def test_sqlite_tiers_default_and_clamp(temp_tier_db):
    temp_tier_db.create_user("dana", {"multiplication": 250, "addition": "n/a"})
    tiers = temp_tier_db.get_math_tiers("dana")
    assert tiers == MathTiers(multiplication=100, addition=1, subtraction=1, division=1)


def test_sqlite_unparseable_tiers_fall_back_to_tier_one(temp_tier_db):
    temp_tier_db._exec("INSERT INTO users (id, math_tiers) VALUES (?, ?)", ("eve", "not json"))
    assert temp_tier_db.get_math_tiers("eve") == MathTiers()


def test_sqlite_tier_change_credits_milestone(temp_tier_db):
    temp_tier_db.create_user("dana", {"division": 19})
    temp_tier_db.apply_tier_change("dana", "division", 20, BAND_REWARD)
    temp_tier_db.apply_tier_change("dana", "division", 20, BAND_REWARD)

    user = temp_tier_db.get_user("dana")
    assert user["math_tiers"]["division"] == 20
    assert user["skill_points"] == {"division": 0}
    assert user["coins"] == 1000
    assert user["total_xp"] == 1000
    assert user["titles"] == ["Foundation Graduate"]
    assert user["achievements"] == ["band_foundation_complete"]

    with pytest.raises(TierStoreError):
        temp_tier_db.apply_tier_change("dana", "exponentiation", 3)


def test_sqlite_legacy_rows_are_migrated_once(temp_tier_db):
    temp_tier_db.create_user(
        "old", {"multiplication": 2, "addition": 4}, tier_scheme=LEGACY_TIER_SCHEME
    )
    migrated = temp_tier_db.get_math_tiers("old")
    assert migrated == MathTiers(addition=61, subtraction=1, multiplication=21, division=1)
    # second read sees the new scheme and does not migrate again
    assert temp_tier_db.get_math_tiers("old") == migrated


def test_in_memory_store_matches_sqlite_behaviour():
    store = InMemoryTierStore({"dana": {"division": 19}})
    assert store.get_math_tiers("ghost") is None
    store.apply_tier_change("dana", "division", 20, BAND_REWARD)

    user = store.get_user("dana")
    assert user["math_tiers"]["division"] == 20
    assert user["coins"] == 500
    assert user["titles"] == ["Foundation Graduate"]

    user["coins"] = 0
    assert store.get_user("dana")["coins"] == 500

    with pytest.raises(TierStoreError):
        store.apply_tier_change("ghost", "division", 3)
