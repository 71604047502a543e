#!/usr/bin/env python3
"""Regent invariant checks against the policy config and persisted engines."""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from regent.persistence.event_log import EventLog
from regent.persistence.state_store import StateStore
from regent.policy.resolver import PolicyResolver
from regent.service import ACTION_SETS, RegentService

CONFIG_DIR = ROOT / "config"
DATA_DIR = ROOT / "data"


def check_policy(resolver: PolicyResolver, errors: list[str]) -> None:
    """Domain tags must be distinct so digests never collide across engines."""
    tags = {name: resolver.domain_tag(name) for name in ACTION_SETS}
    if len(set(tags.values())) != len(tags):
        errors.append(f"Domain tags must be distinct per action set: {tags}")
    if resolver.expiration_window().total_seconds() <= 0:
        errors.append("Expiration window must be positive")


def check_engine(
    resolver: PolicyResolver,
    action_set: str,
    data_dir: Path,
    errors: list[str],
) -> None:
    engine_dir = data_dir / action_set
    state_path = engine_dir / "state.json"
    if not state_path.exists():
        return
    try:
        event_log = EventLog(storage_path=engine_dir / "events.jsonl")
        service = RegentService(
            resolver, action_set,
            event_log=event_log,
            state_store=StateStore(storage_path=state_path),
        )
    except (ValueError, KeyError, OSError) as e:
        errors.append(f"{action_set}: could not load persisted state: {e}")
        return
    for err in service.check_invariants():
        errors.append(f"{action_set}: {err}")
    if service.engine.unwritten_events:
        errors.append(
            f"{action_set}: {service.engine.unwritten_events} committed "
            f"transition event(s) missing from the audit log"
        )


def check(config_dir: Path = CONFIG_DIR, data_dir: Path = DATA_DIR) -> int:
    errors: list[str] = []
    try:
        resolver = PolicyResolver.from_config_dir(config_dir)
    except (OSError, ValueError) as e:
        print(f"Invariant check failed:\n- policy: {e}")
        return 1

    check_policy(resolver, errors)
    for action_set in sorted(ACTION_SETS):
        check_engine(resolver, action_set, data_dir, errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", type=Path, default=CONFIG_DIR)
    parser.add_argument("--data", type=Path, default=DATA_DIR)
    args = parser.parse_args(argv)
    return check(args.config, args.data)


if __name__ == "__main__":
    raise SystemExit(main())
