"""Hint ladder configuration loader."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from string import Formatter
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from tier_system import OPERATIONS

PLACEHOLDERS = frozenset(
    {"a", "b", "symbol", "times", "answer", "split_hi", "split_lo", "part_hi", "part_lo"}
)
ERROR_SIGNATURES = frozenset(
    {"magnitude_error", "off_by_one", "place_value_error", "near_fact_confusion"}
)


# shipped as package data of engines/
DEFAULT_LADDER_PATH = Path(__file__).resolve().parent / "engines" / "hint_ladder.json"


class HintLadderConfigError(ValueError):
    """Raised when ``hint_ladder.json`` contains invalid data."""


@dataclass(frozen=True)
class HintLevel:
    """Immutable representation of one rung of the hint ladder."""

    level: int
    hint_type: str
    label: str
    templates: Mapping[str, Tuple[str, ...]]

    def templates_for(self, operation: str) -> Tuple[str, ...]:
        return self.templates.get(operation, ())


def _placeholders(template: str) -> List[str]:
    return [field for _, field, _, _ in Formatter().parse(template) if field]


class HintLadderRegistry:
    """Load the hint ladder from ``hint_ladder.json``."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else DEFAULT_LADDER_PATH
        self._levels: List[HintLevel] = []
        self._error_hints: Dict[str, str] = {}
        self.reload()

    # ------------------------------------------------------------------
    def reload(self) -> None:
        """Reload the ladder from disk and validate the structure."""

        if not self.path.exists():
            raise FileNotFoundError(f"Hint ladder file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        if not isinstance(raw, dict):
            raise HintLadderConfigError("Hint ladder file must contain a JSON object")

        raw_levels = raw.get("levels")
        if not isinstance(raw_levels, list) or not raw_levels:
            raise HintLadderConfigError("Hint ladder must define a non-empty 'levels' list")

        levels: List[HintLevel] = []
        seen: set[int] = set()
        for idx, entry in enumerate(raw_levels, start=1):
            levels.append(self._parse_level(idx, entry, seen))

        levels.sort(key=lambda lvl: lvl.level)
        self._levels = levels
        self._error_hints = self._parse_error_hints(raw.get("error_signatures", {}))

    @staticmethod
    def _parse_level(idx: int, entry: object, seen: set[int]) -> HintLevel:
        if not isinstance(entry, dict):
            raise HintLadderConfigError(f"Level #{idx} must be a JSON object")

        try:
            level = int(entry["level"])
        except (KeyError, TypeError, ValueError) as exc:
            raise HintLadderConfigError(f"Level #{idx} is missing an integer 'level'") from exc
        if level < 1:
            raise HintLadderConfigError(f"Level #{idx} must be >= 1")
        if level in seen:
            raise HintLadderConfigError(f"Duplicate hint level detected: {level}")
        seen.add(level)

        hint_type = str(entry.get("hint_type", "")).strip()
        if not hint_type:
            raise HintLadderConfigError(f"Level {level} is missing a non-empty 'hint_type'")
        label = str(entry.get("label", hint_type)).strip()

        raw_templates = entry.get("templates")
        if not isinstance(raw_templates, dict):
            raise HintLadderConfigError(f"Level {level} must define a 'templates' object")

        templates: Dict[str, Tuple[str, ...]] = {}
        for operation in OPERATIONS:
            variants = raw_templates.get(operation)
            if not isinstance(variants, list) or not variants:
                raise HintLadderConfigError(
                    f"Level {level} needs at least one template for {operation}"
                )
            cleaned = []
            for text in variants:
                if not isinstance(text, str) or not text.strip():
                    raise HintLadderConfigError(f"Level {level} has an empty {operation} template")
                unknown = set(_placeholders(text)) - PLACEHOLDERS
                if unknown:
                    raise HintLadderConfigError(
                        f"Level {level} {operation} template uses unknown placeholders: "
                        f"{', '.join(sorted(unknown))}"
                    )
                cleaned.append(text.strip())
            templates[operation] = tuple(cleaned)

        return HintLevel(level, hint_type, label, templates)

    @staticmethod
    def _parse_error_hints(raw: object) -> Dict[str, str]:
        if not isinstance(raw, dict):
            raise HintLadderConfigError("'error_signatures' must be a JSON object")
        hints: Dict[str, str] = {}
        for signature, text in raw.items():
            if signature not in ERROR_SIGNATURES:
                raise HintLadderConfigError(f"Unknown error signature: {signature}")
            if not isinstance(text, str) or not text.strip():
                raise HintLadderConfigError(f"Error signature {signature} needs a hint text")
            hints[signature] = text.strip()
        return hints

    # ------------------------------------------------------------------
    @property
    def levels(self) -> List[HintLevel]:
        """Return a shallow copy of the ladder levels in ascending order."""

        return list(self._levels)

    @property
    def max_level(self) -> int:
        return self._levels[-1].level

    def level_for_attempt(self, attempt_number: int) -> HintLevel:
        """Return the rung for ``attempt_number`` (1-based), clamped to the top."""

        index = max(0, min(attempt_number - 1, len(self._levels) - 1))
        return self._levels[index]

    def levels_from(self, attempt_number: int) -> List[HintLevel]:
        """Return the rung for ``attempt_number`` followed by every higher rung."""

        start = max(0, min(attempt_number - 1, len(self._levels) - 1))
        return self._levels[start:]

    def error_hint(self, signature: str) -> Optional[str]:
        return self._error_hints.get(signature)

    # ------------------------------------------------------------------
    def __iter__(self) -> Iterable[HintLevel]:
        return iter(self._levels)


HINT_LADDER = HintLadderRegistry()
"""Singleton registry used by the coach."""
