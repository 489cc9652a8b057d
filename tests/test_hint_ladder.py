import json
from pathlib import Path

import pytest

from engine_config import EngineConfig, HintConfig
from engines.orchestrator import PracticeOrchestrator
from hint_ladder import DEFAULT_LADDER_PATH, HINT_LADDER, HintLadderConfigError, HintLadderRegistry
from tier_system import OPERATIONS


def _level(level, hint_type="strategy", template="Try {a} {symbol} {b}."):
    return {
        "level": level,
        "hint_type": hint_type,
        "templates": {op: [template] for op in OPERATIONS},
    }


def _write(tmp_path: Path, data, name="ladder.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_default_ladder_has_four_rungs_for_every_operation():
    assert [lvl.hint_type for lvl in HINT_LADDER] == [
        "conceptual",
        "strategy",
        "decomposition",
        "reveal",
    ]
    assert HINT_LADDER.max_level == 4
    for level in HINT_LADDER.levels:
        for operation in OPERATIONS:
            assert level.templates_for(operation)
    assert HINT_LADDER.error_hint("off_by_one")
    assert HINT_LADDER.error_hint("unknown") is None


def test_attempts_map_onto_rungs():
    assert HINT_LADDER.level_for_attempt(0).level == 1
    assert HINT_LADDER.level_for_attempt(2).level == 2
    assert HINT_LADDER.level_for_attempt(9).level == 4
    assert [lvl.level for lvl in HINT_LADDER.levels_from(3)] == [3, 4]


def test_custom_ladder_is_sorted(tmp_path):
    path = _write(tmp_path, {"levels": [_level(2), _level(1, "conceptual")]})
    registry = HintLadderRegistry(path)
    assert [lvl.level for lvl in registry.levels] == [1, 2]
    assert registry.levels[1].label == "strategy"


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"levels": []},
        {"levels": [_level(1), _level(1)]},
        {"levels": [_level(0)]},
        {"levels": [{"level": 1, "templates": {}}]},
        {"levels": [_level(1, template="Use {secret}.")]},
        {"levels": [_level(1)], "error_signatures": {"typo": "text"}},
        {"levels": [_level(1)], "error_signatures": {"off_by_one": " "}},
    ],
)
def test_invalid_ladders_are_rejected(tmp_path, data):
    with pytest.raises(HintLadderConfigError):
        HintLadderRegistry(_write(tmp_path, data))


def test_missing_operation_template_is_rejected(tmp_path):
    level = _level(1)
    del level["templates"]["division"]
    with pytest.raises(HintLadderConfigError):
        HintLadderRegistry(_write(tmp_path, {"levels": [level]}))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        HintLadderRegistry(tmp_path / "absent.json")


def test_orchestrator_loads_configured_ladder(tmp_path):
    path = _write(tmp_path, {"levels": [_level(1, "conceptual"), _level(2)]})
    config = EngineConfig(hints=HintConfig(ladder_path=str(path)))
    orchestrator = PracticeOrchestrator(config)
    assert orchestrator.coach.ladder.max_level == 2
    assert PracticeOrchestrator().coach.ladder is HINT_LADDER


def test_default_ladder_ships_with_the_engines_package():
    assert HINT_LADDER.path == DEFAULT_LADDER_PATH
    assert DEFAULT_LADDER_PATH.parent.name == "engines"
    assert DEFAULT_LADDER_PATH.is_file()
