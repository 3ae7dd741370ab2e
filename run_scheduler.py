#!/usr/bin/env python3
"""
Main Execution Script for the Clerkship Scheduler.

Usage:
  # Run a seed scenario through a full regeneration
  python run_scheduler.py scenario capacity-limited --mode full

  # Smart regeneration on top of a baseline full run
  python run_scheduler.py scenario multi-team --mode smart --cutoff 2026-01-12 --strategy minimal-change

  # Completion with relaxed constraints, exporting the report
  python run_scheduler.py scenario partial-availability --mode completion \
      --relax preceptor-capacity --out report.json

  # Generate a synthetic period with the LLM, then run it from the cache
  python run_scheduler.py generate --out debug_data.json
  python run_scheduler.py scenario --cache debug_data.json --mode full
"""

import argparse
import json
import logging
import os
import sys
from datetime import date

# Add current directory to path so imports work
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from generators.scenarios import SCENARIOS, load_scenario
from models import (
    Clerkship,
    HealthSystem,
    Preceptor,
    PreceptorAvailability,
    PreceptorTeam,
    SchedulingPeriod,
    Site,
    Student,
)
from scheduler import (
    RegenerationMode,
    RegenerationOptions,
    RegenerationOrchestrator,
    SchedulerConfig,
    SchedulingError,
)
from store import InMemoryStore, SqlStore

logger = logging.getLogger("Main")

CACHE_FILENAME = "debug_data.json"

# cache key -> (model, store writer)
_CACHE_LAYOUT = [
    ("periods", SchedulingPeriod, "add_period"),
    ("health_systems", HealthSystem, "add_health_system"),
    ("sites", Site, "add_site"),
    ("clerkships", Clerkship, "add_clerkship"),
    ("students", Student, "add_student"),
    ("preceptors", Preceptor, "add_preceptor"),
    ("availability", PreceptorAvailability, "add_availability"),
    ("teams", PreceptorTeam, "save_team"),
]


def save_debug_data(data: dict, filename: str):
    """Save generated data so we don't re-query the LLM every time."""
    serializable = {}
    for key, val in data.items():
        if isinstance(val, list):
            serializable[key] = [item.model_dump(mode='json') for item in val]

    with open(filename, 'w') as f:
        json.dump(serializable, f, indent=2)
    logger.info(f"Saved generated data to {filename}")


def load_bundle(data: dict, store) -> str:
    """Write a generated bundle (models or their JSON dicts) into the store; returns the period id."""
    period_ids = []
    for key, model_cls, writer in _CACHE_LAYOUT:
        for item in data.get(key, []):
            entity = model_cls(**item) if isinstance(item, dict) else item
            getattr(store, writer)(entity)
            if key == "periods":
                period_ids.append(entity.id)

    if not period_ids:
        raise ValueError("Bundle holds no scheduling period")
    return period_ids[0]


def load_cached_data(filename: str, store) -> str:
    """Re-hydrate a cached period into the store and return its period id."""
    with open(filename, 'r') as f:
        data = json.load(f)

    logger.info(f"Loading cached data from {filename}...")
    return load_bundle(data, store)


def _make_store(args):
    if args.db:
        return SqlStore(args.db)
    return InMemoryStore()


def print_report(report, orchestrator):
    print("\n" + "=" * 50)
    print(f"RUN {report.run_id} - {report.mode.value.upper()} ({report.state.value})")
    print("=" * 50)
    print(f"Created:    {report.created_count}")
    print(f"Kept:       {report.kept_count}")
    print(f"Removed:    {report.removed_count}")
    print(f"Frozen:     {report.frozen_count}")
    print(f"Unassigned: {report.unassigned_days} day(s)")

    if report.failure_report:
        print("\nUNMET REQUIREMENTS")
        for entry in report.failure_report:
            label = entry["clerkship_id"] + (f" / {entry['elective_id']}" if entry["elective_id"] else "")
            cause = entry["primary_failure_cause"] or "no candidate slot"
            print(f"  {entry['student_id']} {label}: {entry['missing_days']} day(s) - {cause}")

    if report.accepted_violations:
        print(f"\nACCEPTED VIOLATIONS: {len(orchestrator.get_violations(report.run_id))}")

    if report.invalid_teams:
        print("\nEXCLUDED TEAMS")
        for team in report.invalid_teams:
            print(f"  {team.team_id}: {'; '.join(team.reasons)}")

    if report.suggestions:
        print("\nSUGGESTIONS")
        for suggestion in report.suggestions:
            print(f"  [{suggestion.impact}] {suggestion.title}: {suggestion.description}")


def cmd_scenario(args):
    """Seed a store, optionally build a baseline, then run the requested mode."""
    store = _make_store(args)
    if args.cache:
        period_id = load_cached_data(args.cache, store)
    elif args.name:
        period_id = load_scenario(args.name, store)
    else:
        print("Either a scenario name or --cache is required")
        sys.exit(2)

    config = SchedulerConfig.from_env(
        **({"enable_fallbacks": True} if args.fallbacks else {}),
        **({"fallback_allow_cross_system": True} if args.cross_system else {}),
    )
    orchestrator = RegenerationOrchestrator(store, config)
    mode = RegenerationMode(args.mode)

    if mode != RegenerationMode.FULL:
        logger.info("Building baseline schedule with a full regeneration")
        orchestrator.regenerate(period_id, RegenerationMode.FULL, options=RegenerationOptions(confirm_destructive=True))

    options = RegenerationOptions(
        cutoff_date=date.fromisoformat(args.cutoff) if args.cutoff else None,
        strategy=args.strategy,
        constraints_to_relax=args.relax or [],
        confirm_destructive=True,
        dry_run=args.dry_run,
    )
    try:
        report = orchestrator.regenerate(period_id, mode, options=options)
    except SchedulingError as e:
        logger.error(f"Regeneration failed: {e}")
        sys.exit(1)

    print_report(report, orchestrator)

    if args.out:
        with open(args.out, 'w') as f:
            json.dump(report.to_dict(), f, indent=2)
        logger.info(f"Exported run report to {args.out}")


def cmd_generate(args):
    """Ask the LLM for a synthetic period and cache it as JSON."""
    from generators.data_factory import DataGenerator

    generator = DataGenerator()
    start = date.fromisoformat(args.start) if args.start else date.today()
    bundle, cost = generator.generate_period(
        start_date=start,
        days=args.days,
        student_count=args.students,
        preceptor_count=args.preceptors,
        clerkship_count=args.clerkships,
    )
    logger.info(f"Total Estimated LLM Cost: ${cost:.4f}")
    save_debug_data(bundle, args.out)


def main():
    parser = argparse.ArgumentParser(
        description="Clerkship Scheduler - regeneration engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG logging")
    sub = parser.add_subparsers(dest="command", help="Command")

    # scenario
    p_scn = sub.add_parser("scenario", help="Run a seed scenario (or cached period) through a regeneration mode")
    p_scn.add_argument("name", nargs="?", choices=sorted(SCENARIOS), help="Seed scenario")
    p_scn.add_argument("--cache", help="Load a generated period from this JSON file instead")
    p_scn.add_argument("--mode", choices=[m.value for m in RegenerationMode], default="full")
    p_scn.add_argument("--cutoff", help="Smart mode cutoff date (YYYY-MM-DD)")
    p_scn.add_argument("--strategy", choices=["minimal-change", "full-reoptimize"], default="minimal-change")
    p_scn.add_argument("--relax", nargs="*", help="Constraints to relax (completion mode)")
    p_scn.add_argument("--fallbacks", action="store_true", help="Enable fallback gap fill")
    p_scn.add_argument("--cross-system", action="store_true", help="Allow cross-system fallbacks")
    p_scn.add_argument("--dry-run", action="store_true", help="Report without committing")
    p_scn.add_argument("--db", help="SQLAlchemy URL (default: in-memory store)")
    p_scn.add_argument("--out", help="Export the run report as JSON")

    # generate
    p_gen = sub.add_parser("generate", help="Generate a synthetic period with the LLM")
    p_gen.add_argument("--out", default=CACHE_FILENAME)
    p_gen.add_argument("--start", help="Period start date (YYYY-MM-DD)")
    p_gen.add_argument("--days", type=int, default=28)
    p_gen.add_argument("--students", type=int, default=8)
    p_gen.add_argument("--preceptors", type=int, default=8)
    p_gen.add_argument("--clerkships", type=int, default=2)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    dispatch = {
        "scenario": cmd_scenario,
        "generate": cmd_generate,
    }
    dispatch[args.command](args)


if __name__ == "__main__":
    main()
