"""Drive a simulated learner through one or more practice sessions.

Uses in-memory stores only, so no database or LLM endpoint is needed. Each
answer is drawn from a persona whose accuracy falls off as the generated
item's tier rises above the persona's true skill tier.
"""

from __future__ import annotations

import argparse
import json
import math
import random
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from practice_service import PracticeService
from schemas import ContentItem, ServiceError
from session_store import InMemorySessionStore
from tier_store import InMemoryTierStore
from tier_system import OPERATIONS, format_tier_display

SIM_USER = "simulated-learner"


@dataclass
class Persona:
    """Simulated learner profile."""

    name: str
    skill_tier: int
    base_latency_ms: float
    slope: float = 4.0
    help_rate: float = 0.0


PERSONAS: Dict[str, Persona] = {
    "novice": Persona(name="novice", skill_tier=8, base_latency_ms=6500, help_rate=0.2),
    "steady": Persona(name="steady", skill_tier=35, base_latency_ms=4000),
    "fast": Persona(name="fast", skill_tier=70, base_latency_ms=1800, slope=6.0),
}


def answer_probability(persona: Persona, item_tier: int) -> float:
    """Logistic success probability around the persona's skill tier."""

    gap = persona.skill_tier - item_tier
    return 1.0 / (1.0 + math.exp(-gap / persona.slope))


def simulate_answer(rng: random.Random, persona: Persona, item: ContentItem) -> tuple[str, float, bool]:
    correct = rng.random() < answer_probability(persona, item.tier_generated)
    latency = persona.base_latency_ms * (0.6 + item.difficulty) * rng.uniform(0.8, 1.2)
    if correct:
        answer = item.correct_answer
    else:
        answer = item.correct_answer + rng.choice([-2, -1, 1, 2, 10])
    help_used = not correct and rng.random() < persona.help_rate
    text = str(int(answer)) if float(answer).is_integer() else str(answer)
    return text, round(latency, 1), help_used


def run_simulation(
    persona: Persona,
    operation: str,
    *,
    start_tier: int = 1,
    sessions: int = 1,
    questions: int = 25,
    seed: Optional[int] = None,
) -> List[dict]:
    """Run ``sessions`` consecutive sessions and return one summary per session."""

    rng = random.Random(seed)
    tier_store = InMemoryTierStore({SIM_USER: {operation: start_tier}})
    service = PracticeService(tier_store, InMemorySessionStore(), rng=random.Random(rng.random()))

    summaries: List[dict] = []
    for index in range(sessions):
        started = service.initialize_session(SIM_USER, operation)
        if isinstance(started, ServiceError):
            raise RuntimeError(f"{started.error}: {started.message}")

        item = started.first_question
        sources: Dict[str, int] = {}
        hints = 0
        peak_tilt = 0.0
        for _ in range(questions):
            answer, latency, help_used = simulate_answer(rng, persona, item)
            result = service.submit_answer(started.session_id, answer, latency, help_used=help_used)
            if isinstance(result, ServiceError):
                raise RuntimeError(f"{result.error}: {result.message}")
            if result.hint is not None:
                hints += 1
            source = result.envelope.selection.source
            sources[source] = sources.get(source, 0) + 1
            peak_tilt = max(peak_tilt, result.session_stats.tilt_score)
            item = result.next_question

        stats = result.session_stats
        ended = service.end_session(started.session_id)
        if isinstance(ended, ServiceError):
            raise RuntimeError(f"{ended.error}: {ended.message}")
        progression = ended.tier_progression

        summaries.append(
            {
                "session": index + 1,
                "accuracy": round(stats.accuracy, 3),
                "max_streak": stats.max_streak,
                "peak_tilt": round(peak_tilt, 3),
                "confidence": round(stats.confidence_score, 3),
                "echo_resolved": stats.echo_resolved,
                "hints": hints,
                "sources": sources,
                "previous_tier": progression.previous_tier,
                "new_tier": progression.new_tier,
                "blocked_by_band_boundary": progression.blocked_by_band_boundary,
                "milestone": progression.milestone.type if progression.milestone else None,
            }
        )
    return summaries


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--persona", choices=sorted(PERSONAS), default="steady")
    parser.add_argument("--operation", choices=OPERATIONS, default="multiplication")
    parser.add_argument("--start-tier", type=int, default=1, help="Initial tier (1-100)")
    parser.add_argument("--sessions", type=int, default=5)
    parser.add_argument("--questions", type=int, default=25, help="Answers per session")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--json", action="store_true", help="Print summaries as JSON")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if not 1 <= args.start_tier <= 100:
        print("--start-tier must be between 1 and 100", file=sys.stderr)
        return 2

    persona = PERSONAS[args.persona]
    summaries = run_simulation(
        persona,
        args.operation,
        start_tier=args.start_tier,
        sessions=args.sessions,
        questions=args.questions,
        seed=args.seed,
    )

    if args.json:
        print(json.dumps(summaries, indent=2))
        return 0

    print(f"Persona {persona.name} (skill tier {persona.skill_tier}) on {args.operation}")
    for summary in summaries:
        flag = " [band boundary]" if summary["blocked_by_band_boundary"] else ""
        print(
            f"  #{summary['session']}: acc={summary['accuracy']:.2f} "
            f"streak={summary['max_streak']} tilt={summary['peak_tilt']:.2f} "
            f"conf={summary['confidence']:.2f} "
            f"{format_tier_display(summary['previous_tier'])} -> "
            f"{format_tier_display(summary['new_tier'])}{flag}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
