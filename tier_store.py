"""Persistence of learners' per-operation tiers and rewards."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from copy import deepcopy
from queue import Empty, Queue
from typing import Any, Dict, Generator, Iterable, Mapping, Optional, Protocol

from pydantic import ValidationError

from schemas import MathTiers, MilestoneReward, parse_json_safe
from tier_system import OPERATIONS, clamp_tier, migrate_math_tiers

logger = logging.getLogger(__name__)

LEGACY_TIER_SCHEME = 4
CURRENT_TIER_SCHEME = 100


class TierStoreError(RuntimeError):
    """Raised when a tier change cannot be written."""


class TierUserNotFound(TierStoreError):
    """Raised when a tier change targets a user with no record."""


class TierStore(Protocol):
    def get_math_tiers(self, user_id: str) -> Optional[MathTiers]:
        """Return the learner's tiers, or ``None`` when the user is unknown."""
        ...

    def apply_tier_change(
        self,
        user_id: str,
        operation: str,
        new_tier: int,
        milestone: Optional[MilestoneReward] = None,
    ) -> None:
        """Set one operation's tier, reset its skill points and credit ``milestone``."""
        ...


def _parse_tiers(raw: Optional[str], user_id: str) -> MathTiers:
    if not raw:
        return MathTiers()
    try:
        return parse_json_safe(raw, MathTiers)
    except (ValidationError, ValueError) as exc:
        logger.warning("Unparseable math_tiers for user %s: %s", user_id, exc)
        return MathTiers()


def _load_json_object(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _load_json_list(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------
class _ConnectionPool:
    """Thread-safe SQLite connection pool."""

    def __init__(self, database: str, max_connections: int = 5):
        self.database = database
        self.max_connections = max_connections
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created_connections = 0

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a connection from the pool or create a new one if needed."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if self._created_connections < self.max_connections:
                    connection = self._create_connection()
                    self._created_connections += 1
                    logger.debug("Created new connection (total: %s)", self._created_connections)
            if connection is None:
                connection = self._pool.get(block=True)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._pool.put(connection)
            except sqlite3.Error as e:
                logger.error("Error returning connection to pool: %s", e)
                connection.close()
                with self._lock:
                    self._created_connections -= 1

    def close(self) -> None:
        while True:
            try:
                connection = self._pool.get(block=False)
            except Empty:
                break
            connection.close()
            with self._lock:
                self._created_connections -= 1


class SQLiteTierStore:
    """Tier store backed by a ``users`` table with JSON columns."""

    def __init__(self, path: str, max_connections: int = 5):
        self.path = path
        self._pool = _ConnectionPool(path, max_connections=max_connections)
        self.init()

    def _exec(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        with self._pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            con.commit()
            return cur

    def _query(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        with self._pool.get_connection() as con:
            return con.execute(sql, tuple(params)).fetchall()

    def init(self) -> None:
        self._exec(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                math_tiers TEXT,
                tier_scheme INTEGER NOT NULL DEFAULT 100,
                skill_points TEXT,
                coins INTEGER NOT NULL DEFAULT 0,
                total_xp INTEGER NOT NULL DEFAULT 0,
                titles TEXT,
                achievements TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

    def close(self) -> None:
        self._pool.close()

    # ------------------------------------------------------------------
    def create_user(
        self,
        user_id: str,
        math_tiers: Optional[Mapping[str, int]] = None,
        tier_scheme: int = CURRENT_TIER_SCHEME,
    ) -> None:
        """Insert a learner row (used by seeding scripts and tests)."""
        self._exec(
            "INSERT OR REPLACE INTO users (id, math_tiers, tier_scheme) VALUES (?, ?, ?)",
            (user_id, json.dumps(dict(math_tiers or {})), tier_scheme),
        )

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = self._query(
            "SELECT math_tiers, skill_points, coins, total_xp, titles, achievements "
            "FROM users WHERE id = ?",
            [user_id],
        )
        if not rows:
            return None
        row = rows[0]
        return {
            "math_tiers": _parse_tiers(row["math_tiers"], user_id).model_dump(),
            "skill_points": _load_json_object(row["skill_points"]),
            "coins": int(row["coins"] or 0),
            "total_xp": int(row["total_xp"] or 0),
            "titles": _load_json_list(row["titles"]),
            "achievements": _load_json_list(row["achievements"]),
        }

    def get_math_tiers(self, user_id: str) -> Optional[MathTiers]:
        rows = self._query("SELECT math_tiers, tier_scheme FROM users WHERE id = ?", [user_id])
        if not rows:
            return None
        row = rows[0]

        if row["tier_scheme"] == LEGACY_TIER_SCHEME:
            legacy = _load_json_object(row["math_tiers"])
            migrated = migrate_math_tiers(
                {op: value for op, value in legacy.items() if isinstance(value, int)}
            )
            self._exec(
                "UPDATE users SET math_tiers = ?, tier_scheme = ?, updated_at = CURRENT_TIMESTAMP "
                "WHERE id = ?",
                (json.dumps(migrated), CURRENT_TIER_SCHEME, user_id),
            )
            logger.info("Migrated legacy tiers for user %s: %s", user_id, migrated)
            return MathTiers(**migrated)

        return _parse_tiers(row["math_tiers"], user_id)

    def apply_tier_change(
        self,
        user_id: str,
        operation: str,
        new_tier: int,
        milestone: Optional[MilestoneReward] = None,
    ) -> None:
        if operation not in OPERATIONS:
            raise TierStoreError(f"Unknown operation: {operation}")

        try:
            with self._pool.get_connection() as con:
                row = con.execute(
                    "SELECT math_tiers, skill_points, titles, achievements FROM users WHERE id = ?",
                    (user_id,),
                ).fetchone()
                if row is None:
                    raise TierUserNotFound(f"User not found: {user_id}")

                tiers = _parse_tiers(row["math_tiers"], user_id).model_dump()
                tiers[operation] = clamp_tier(new_tier)
                skill_points = _load_json_object(row["skill_points"])
                skill_points[operation] = 0
                titles = _load_json_list(row["titles"])
                achievements = _load_json_list(row["achievements"])

                coins = xp = 0
                if milestone is not None:
                    coins, xp = milestone.coins, milestone.xp
                    if milestone.title and milestone.title not in titles:
                        titles.append(milestone.title)
                    if milestone.achievement and milestone.achievement not in achievements:
                        achievements.append(milestone.achievement)

                con.execute(
                    """
                    UPDATE users
                    SET math_tiers = ?, skill_points = ?, coins = coins + ?,
                        total_xp = total_xp + ?, titles = ?, achievements = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (
                        json.dumps(tiers),
                        json.dumps(skill_points),
                        coins,
                        xp,
                        json.dumps(titles),
                        json.dumps(achievements),
                        user_id,
                    ),
                )
                con.commit()
        except sqlite3.Error as exc:
            raise TierStoreError(f"Failed to write tier for {user_id}: {exc}") from exc


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------
class InMemoryTierStore:
    """Dictionary-backed tier store for tests and anonymous demos."""

    def __init__(self, users: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._lock = threading.Lock()
        self._users: Dict[str, Dict[str, Any]] = {}
        for user_id, tiers in (users or {}).items():
            self.create_user(user_id, tiers)

    def create_user(self, user_id: str, math_tiers: Optional[Mapping[str, Any]] = None) -> None:
        with self._lock:
            self._users[user_id] = {
                "math_tiers": MathTiers.model_validate(dict(math_tiers or {})).model_dump(),
                "skill_points": {},
                "coins": 0,
                "total_xp": 0,
                "titles": [],
                "achievements": [],
            }

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            user = self._users.get(user_id)
            return deepcopy(user) if user is not None else None

    def get_math_tiers(self, user_id: str) -> Optional[MathTiers]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            return MathTiers.model_validate(user["math_tiers"])

    def apply_tier_change(
        self,
        user_id: str,
        operation: str,
        new_tier: int,
        milestone: Optional[MilestoneReward] = None,
    ) -> None:
        if operation not in OPERATIONS:
            raise TierStoreError(f"Unknown operation: {operation}")
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise TierUserNotFound(f"User not found: {user_id}")
            user["math_tiers"][operation] = clamp_tier(new_tier)
            user["skill_points"][operation] = 0
            if milestone is not None:
                user["coins"] += milestone.coins
                user["total_xp"] += milestone.xp
                if milestone.title and milestone.title not in user["titles"]:
                    user["titles"].append(milestone.title)
                if milestone.achievement and milestone.achievement not in user["achievements"]:
                    user["achievements"].append(milestone.achievement)
