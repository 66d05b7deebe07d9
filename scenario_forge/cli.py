"""Command line runner for simulated conversations.

Usage:
    scenario-forge run --scenario scenarios/ghosting.yaml --simulate
    scenario-forge run --scenario S.yaml --profile P1.yaml --profile P2.yaml
    scenario-forge run --scenario S.yaml --max-turns 12 --output-dir ./traces
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from scenario_forge.config import load_config, load_profile, load_scenario
from scenario_forge.engine.events import JsonlEventSink, LoggingEventSink
from scenario_forge.engine.metrics import top_items
from scenario_forge.engine.models import RunResult
from scenario_forge.engine.orchestrator import TurnOrchestrator
from scenario_forge.engine.scoring import approval_rate
from scenario_forge.exceptions import ScenarioForgeError


def print_summary(result: RunResult) -> None:
    """Print a per-conversation summary."""
    print(f"\n{'='*60}")
    print(f"SCENARIO {result.scenario_id}: {len(result.conversations)} conversation(s)")
    print(f"{'='*60}")

    for conv in result.conversations:
        print(f"\n[{conv.status.upper()}] {conv.conversation_id}")
        print(f"  Profile: {conv.profile_id or '-'}")
        print(f"  Turns: {conv.turn_count} ({conv.degraded_turns} degraded records)")
        print(f"  Sync: {conv.sync.status} (run {conv.sync.run_id or '-'})")
        print(f"  Avg chars: {conv.metrics.avg_chars}, avg questions: {conv.metrics.avg_questions}")
        if conv.scores:
            print(
                f"  Score: {conv.scores.total} (structural {conv.scores.structural}, "
                f"safety {conv.scores.safety}, qualitative {conv.scores.qualitative})"
            )
        for lint in conv.lints:
            codes = ", ".join(f.code.value for f in lint.findings)
            print(f"  Lint on record {lint.sequence} (turn {lint.turn_index}): {codes}")
        emotions = ", ".join(f"{name} ({n})" for name, n in top_items(conv.metrics.emotion_freq))
        if emotions:
            print(f"  Top emotions: {emotions}")
        for escalation in conv.escalations:
            print(
                f"  Safety escalation on turn {escalation.turn_index}: "
                f"{', '.join(escalation.matched)} -> {escalation.escalation}"
            )
        if conv.memory.facts:
            print("  Memory:")
            for fact in conv.memory.facts:
                print(f"    - {fact}")
        if conv.error:
            print(f"  Error: {conv.error}")

    print(f"\nApproval rate: {approval_rate(result.conversations):.0%}")


async def run_command(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    scenario = load_scenario(args.scenario)
    profiles = [load_profile(p) for p in args.profile or []]

    options = config.run
    updates = {}
    if args.max_turns is not None:
        updates["max_turns"] = args.max_turns
    if args.conversations is not None:
        updates["conversations_per_scenario"] = args.conversations
    if updates:
        options = options.model_validate({**options.model_dump(), **updates})

    event_sink = JsonlEventSink(f"{args.output_dir}/events.jsonl") if args.output_dir else LoggingEventSink()
    orchestrator = TurnOrchestrator(
        event_sink=event_sink,
        memory_options=config.memory,
        generation_timeout=config.generation_timeout,
        persistence_timeout=config.persistence_timeout,
        trace_output_dir=args.output_dir,
        default_lang=config.lang,
    )
    result = await orchestrator.run_scenario(
        scenario,
        options,
        system_spec=config.system_spec,
        safety_config=config.safety,
        generation_config=config.generation,
        simulation_only=args.simulate,
        profiles=profiles,
    )

    print_summary(result)
    return 0 if result.all_completed else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scenario-forge",
        description="Simulate conversations between a synthetic user and a responder",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a scenario")
    run.add_argument("--scenario", type=str, required=True, help="Scenario YAML file")
    run.add_argument(
        "--profile",
        type=str,
        action="append",
        help="Synthetic user profile YAML (repeat for a batch)",
    )
    run.add_argument("--max-turns", type=int, default=None, help="Turns per conversation")
    run.add_argument("--conversations", type=int, default=None, help="Conversations per profile")
    run.add_argument("--config", type=str, default=None, help="Engine config YAML")
    run.add_argument(
        "--simulate",
        action="store_true",
        help="Use canned replies instead of calling a model",
    )
    run.add_argument("--output-dir", type=str, default=None, help="Directory for conversation exports")
    run.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run_command(args))
    except ScenarioForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
