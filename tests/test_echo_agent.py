import random

from engine_config import EchoConfig
from engines.content_variants import build_item
from engines.echo_agent import EchoAgent, EchoStatus, echo_delay


def _agent(**overrides):
    return EchoAgent(EchoConfig(**overrides), random.Random(9))


def test_delay_doubles_until_capped():
    delays = [echo_delay(misses) for misses in range(1, 8)]
    assert delays == [2, 4, 8, 16, 16, 16, 16]
    assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))
    assert echo_delay(3, EchoConfig(base_delay=1, max_delay=3)) == 3


def test_missed_fact_goes_scheduled_due_resolved():
    agent = _agent()
    state = agent.initialize()
    missed = build_item("division", 42, 7)

    entry = agent.record_miss(state, missed, question_number=1)
    assert entry.status is EchoStatus.SCHEDULED
    assert entry.due_at_question == 3
    assert agent.next_due(state, 2) is None

    entry, first_echo = agent.next_due(state, 3)
    assert entry.status is EchoStatus.DUE
    assert first_echo.skill_id == "div.42÷7"
    assert first_echo.variant == "missing_op2"
    assert first_echo.prompt_text == "42 ÷ ? = 6"
    assert first_echo.correct_answer == 7

    agent.record_hit(state, first_echo, 3)
    assert entry.status is EchoStatus.SCHEDULED
    assert entry.due_at_question == 4

    entry, second_echo = agent.next_due(state, 4)
    assert second_echo.variant == "missing_op1"
    assert second_echo.item_id != first_echo.item_id

    resolved = agent.record_hit(state, second_echo, 4)
    assert resolved.status is EchoStatus.RESOLVED
    assert state.entries == {}
    assert state.resolved_count == 1
    assert state.resolved_facts == ["div.42÷7"]


def test_fact_missed_twice_resolves_after_two_due_hits():
    agent = _agent()
    state = agent.initialize()
    agent.record_miss(state, build_item("division", 42, 7), question_number=1)

    entry, echo = agent.next_due(state, 3)
    assert entry.status is EchoStatus.DUE
    agent.record_miss(state, echo, 3)
    assert entry.misses == 2
    assert entry.status is EchoStatus.SCHEDULED
    assert entry.due_at_question == 7
    assert agent.next_due(state, 6) is None

    entry, echo = agent.next_due(state, 7)
    assert entry.status is EchoStatus.DUE
    assert agent.record_hit(state, echo, 7).status is EchoStatus.SCHEDULED

    entry, echo = agent.next_due(state, 8)
    assert echo.skill_id == "div.42÷7"
    resolved = agent.record_hit(state, echo, 8)
    assert resolved.status is EchoStatus.RESOLVED
    assert resolved.misses == 2
    assert state.resolved_facts == ["div.42÷7"]
    assert state.entries == {}


def test_repeat_miss_pushes_the_fact_further_out():
    agent = _agent()
    state = agent.initialize()
    item = build_item("multiplication", 7, 8)

    agent.record_miss(state, item, 1)
    _, echo = agent.next_due(state, 3)
    agent.record_hit(state, echo, 3)
    entry = agent.record_miss(state, echo, 4)

    assert entry.misses == 2
    assert entry.hits == 0
    assert entry.due_at_question == 8
    assert len(state.entries) == 1


def test_hits_on_facts_that_are_not_due_are_ignored():
    agent = _agent()
    state = agent.initialize()
    item = build_item("addition", 9, 6)

    assert agent.record_hit(state, item, 1) is None
    agent.record_miss(state, item, 1)
    assert agent.record_hit(state, item, 2) is None
    assert state.entries["add.9+6"].hits == 0


def test_single_hit_resolution_when_configured():
    agent = _agent(resolve_hits=1)
    state = agent.initialize()
    agent.record_miss(state, build_item("subtraction", 15, 8), 2)
    _, echo = agent.next_due(state, 4)
    assert agent.record_hit(state, echo, 4).status is EchoStatus.RESOLVED


def test_oldest_due_entry_comes_first_and_full_queue_drops_oldest():
    agent = _agent(max_active_entries=2)
    state = agent.initialize()
    first = build_item("multiplication", 6, 7)
    second = build_item("multiplication", 8, 9)
    third = build_item("multiplication", 4, 12)

    agent.record_miss(state, first, 1)
    agent.record_miss(state, second, 2)
    entry, _ = agent.next_due(state, 10)
    assert entry.fact_key == "mul.6x7"

    agent.record_miss(state, third, 3)
    assert sorted(state.entries) == ["mul.4x12", "mul.8x9"]


def test_directive_and_stats():
    agent = _agent()
    state = agent.initialize()
    agent.record_miss(state, build_item("multiplication", 6, 7), 1)
    agent.record_miss(state, build_item("multiplication", 3, 9), 4)

    directive = agent.directive(state, 3)
    assert directive.due_count == 1
    assert directive.scheduled_count == 1
    assert directive.due_skill_ids == ["mul.6x7"]

    agent.next_due(state, 3)
    assert agent.stats(state) == {"active": 2, "scheduled": 1, "due": 1, "resolved": 0}
    assert [e.fact_key for e in agent.active_entries(state)] == ["mul.6x7", "mul.3x9"]
