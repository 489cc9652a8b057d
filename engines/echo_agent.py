"""Echo agent: spaced re-practice of missed facts within a session.

A missed fact is scheduled to come back a few questions later. Missing it
again pushes it further out; answering it correctly enough times in a row
once it is due retires it.
"""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from engine_config import EchoConfig
from engines.content_variants import build_item, select_next_variant
from schemas import ContentItem, EchoDirective

_LOGGER = logging.getLogger(__name__)


class EchoStatus(str, Enum):
    SCHEDULED = "scheduled"
    DUE = "due"
    RESOLVED = "resolved"


@dataclass
class EchoQueueEntry:
    entry_id: str
    fact_key: str
    item: ContentItem
    status: EchoStatus
    enqueued_at_question: int
    due_at_question: int
    misses: int = 1
    hits: int = 0
    used_variants: List[str] = field(default_factory=list)


@dataclass
class EchoAgentState:
    # fact_key -> entry; only scheduled and due entries live here
    entries: Dict[str, EchoQueueEntry] = field(default_factory=dict)
    resolved_count: int = 0
    resolved_facts: List[str] = field(default_factory=list)


def echo_delay(misses: int, config: Optional[EchoConfig] = None) -> int:
    """Questions to wait before re-presenting a fact missed ``misses`` times."""

    config = config or EchoConfig()
    exponent = max(0, misses - 1)
    return min(config.base_delay * (2 ** exponent), config.max_delay)


class EchoAgent:
    def __init__(self, config: Optional[EchoConfig] = None, rng: Optional[random.Random] = None) -> None:
        self.config = config or EchoConfig()
        self.rng = rng or random.Random()

    def initialize(self) -> EchoAgentState:
        return EchoAgentState()

    # ------------------------------------------------------------------
    def record_miss(self, state: EchoAgentState, item: ContentItem, question_number: int) -> EchoQueueEntry:
        """Schedule ``item``'s fact, or push an already queued fact further out."""

        key = item.skill_id
        entry = state.entries.get(key)
        if entry is not None:
            entry.misses += 1
            entry.hits = 0
            entry.status = EchoStatus.SCHEDULED
            entry.due_at_question = question_number + echo_delay(entry.misses, self.config)
            if item.variant not in entry.used_variants:
                entry.used_variants.append(item.variant)
            _LOGGER.debug(
                "echo re-miss %s misses=%s due=%s", key, entry.misses, entry.due_at_question
            )
            return entry

        if len(state.entries) >= self.config.max_active_entries:
            oldest = min(state.entries.values(), key=lambda e: e.enqueued_at_question)
            del state.entries[oldest.fact_key]
            _LOGGER.warning("Echo queue full, dropping %s", oldest.fact_key)

        entry = EchoQueueEntry(
            entry_id=uuid.uuid4().hex,
            fact_key=key,
            item=item,
            status=EchoStatus.SCHEDULED,
            enqueued_at_question=question_number,
            due_at_question=question_number + echo_delay(1, self.config),
            used_variants=[item.variant],
        )
        state.entries[key] = entry
        return entry

    def record_hit(
        self, state: EchoAgentState, item: ContentItem, question_number: int
    ) -> Optional[EchoQueueEntry]:
        """Count a correct answer on a due fact. Other correct answers are ignored."""

        entry = state.entries.get(item.skill_id)
        if entry is None or entry.status is not EchoStatus.DUE:
            return None

        entry.hits += 1
        if entry.hits >= self.config.resolve_hits:
            entry.status = EchoStatus.RESOLVED
            del state.entries[entry.fact_key]
            state.resolved_count += 1
            state.resolved_facts.append(entry.fact_key)
            _LOGGER.debug("echo resolved %s after %s misses", entry.fact_key, entry.misses)
            return entry

        entry.status = EchoStatus.SCHEDULED
        entry.due_at_question = question_number + 1
        return entry

    def next_due(
        self, state: EchoAgentState, question_number: int
    ) -> Optional[Tuple[EchoQueueEntry, ContentItem]]:
        """Return the oldest due entry with its fact re-rendered, or ``None``."""

        ready = [
            entry
            for entry in state.entries.values()
            if entry.due_at_question <= question_number
        ]
        if not ready:
            return None

        entry = min(ready, key=lambda e: (e.due_at_question, e.enqueued_at_question))
        entry.status = EchoStatus.DUE
        variant = select_next_variant(entry.used_variants)
        entry.used_variants.append(variant.value)
        item = build_item(
            entry.item.operation,
            entry.item.operand1,
            entry.item.operand2,
            variant,
            entry.item.tier_generated,
            self.rng,
        )
        return entry, item

    # ------------------------------------------------------------------
    def active_entries(self, state: EchoAgentState) -> List[EchoQueueEntry]:
        return sorted(state.entries.values(), key=lambda e: (e.due_at_question, e.enqueued_at_question))

    def directive(self, state: EchoAgentState, question_number: int) -> EchoDirective:
        due = [
            entry.fact_key
            for entry in self.active_entries(state)
            if entry.status is EchoStatus.DUE or entry.due_at_question <= question_number
        ]
        return EchoDirective(
            due_count=len(due),
            scheduled_count=len(state.entries) - len(due),
            resolved_count=state.resolved_count,
            due_skill_ids=due,
        )

    def stats(self, state: EchoAgentState) -> Dict[str, int]:
        entries = list(state.entries.values())
        return {
            "active": len(entries),
            "scheduled": sum(1 for e in entries if e.status is EchoStatus.SCHEDULED),
            "due": sum(1 for e in entries if e.status is EchoStatus.DUE),
            "resolved": state.resolved_count,
        }
