import random
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def tier_store():
    from tier_store import InMemoryTierStore

    return InMemoryTierStore(
        {
            "alice": {"multiplication": 50, "addition": 12},
            "bob": {"multiplication": 59},
            "carol": {"multiplication": 10, "division": 20},
        }
    )


@pytest.fixture
def session_store():
    from session_store import InMemorySessionStore

    return InMemorySessionStore(ttl_seconds=600)


@pytest.fixture
def service(tier_store, session_store, rng):
    from practice_service import PracticeService

    return PracticeService(tier_store, session_store, rng=rng)


@pytest.fixture
def temp_tier_db(tmp_path):
    from tier_store import SQLiteTierStore

    store = SQLiteTierStore(str(tmp_path / "tiers.db"), max_connections=2)
    yield store
    store.close()
