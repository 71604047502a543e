"""Regent CLI — command-line interface for the governance engine.

Usage:
    python -m regent.cli init --seed 0xSEED --administrator 0xADMIN
    python -m regent.cli propose-rotation --caller 0xSEED --signers 0xA,0xB,0xC --weights 1,2,2 --threshold 3
    python -m regent.cli propose-action --caller 0xADMIN --kind add_region --param region_id=eu-west
    python -m regent.cli approve --caller 0xB --id 2
    python -m regent.cli show --id 2
    python -m regent.cli status
    python -m regent.cli check-invariants

State lives in the data directory (events.jsonl and state.json). Each
action set keeps its own subdirectory so a roles engine and an assets
engine never share a snapshot.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from regent.models.governance import ActionKind
from regent.models.identity import require_identity
from regent.persistence.event_log import EventLog
from regent.persistence.state_store import StateStore
from regent.policy.resolver import PolicyResolver
from regent.service import ACTION_SETS, RegentService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(
    args: argparse.Namespace,
    administrator: str | None = None,
) -> RegentService:
    """Create a RegentService with durable persistence."""
    data_dir = args.data / args.action_set
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(args.config)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    state_store = StateStore(storage_path=data_dir / "state.json")
    kwargs: dict[str, Any] = {}
    if administrator is not None:
        kwargs["administrator"] = administrator
    return RegentService(
        resolver,
        args.action_set,
        event_log=event_log,
        state_store=state_store,
        **kwargs,
    )


def _parse_value(raw: str) -> Any:
    """JSON literal if it parses (true, 3, [..]), otherwise the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_params(pairs: list[str] | None, raw_json: str | None) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if raw_json:
        loaded = json.loads(raw_json)
        if not isinstance(loaded, dict):
            raise ValueError("--params-json must be a JSON object")
        params.update(loaded)
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {pair!r}")
        params[key] = _parse_value(value)
    return params


def _split(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        if "warning" in result.data:
            print(f"Warning: {result.data['warning']}", file=sys.stderr)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_init(args: argparse.Namespace) -> int:
    administrator = require_identity(args.administrator, "administrator")
    service = _make_service(args, administrator=administrator)
    return _report(service.initialize(args.seed))


def cmd_propose_rotation(args: argparse.Namespace) -> int:
    try:
        weights = [int(w) for w in _split(args.weights)]
    except ValueError:
        print(f"Failed: weights must be integers, got {args.weights!r}", file=sys.stderr)
        return 1
    service = _make_service(args)
    return _report(service.propose_rotation(
        args.caller, _split(args.signers), weights, args.threshold,
    ))


def cmd_propose_action(args: argparse.Namespace) -> int:
    try:
        params = _parse_params(args.param, args.params_json)
    except (ValueError, json.JSONDecodeError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    service = _make_service(args)
    return _report(service.propose_action(args.caller, args.kind, params))


def cmd_approve(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.approve(args.caller, args.id))


def cmd_cancel(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.cancel(args.caller, args.id))


def cmd_show(args: argparse.Namespace) -> int:
    service = _make_service(args)
    proposal = service.get_proposal(args.id)
    if not proposal.exists:
        print(f"Failed: proposal {args.id} not found", file=sys.stderr)
        return 1
    state = service.engine.proposal_state(args.id)
    data = {
        "proposal_id": proposal.proposal_id,
        "kind": proposal.kind.value,
        "params": proposal.action.params(),
        "creator": proposal.creator,
        "created_utc": proposal.created_utc.isoformat(),
        "approved_weight": proposal.approved_weight,
        "approvers": proposal.approvers,
        "state": state.value,
        "digest": service.engine.digest_of(args.id),
    }
    print(json.dumps(data, indent=2))
    return 0


def cmd_signers(args: argparse.Namespace) -> int:
    service = _make_service(args)
    engine = service.engine
    rows = []
    for signer in engine.get_signers():
        _, weight = engine.weight_of(signer)
        rows.append({"signer": signer, "weight": weight})
    print(json.dumps(
        {"signers": rows, "threshold": engine.threshold, "total_weight": engine.total_weight},
        indent=2,
    ))
    return 0


def cmd_weight(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.weight_of(args.identity))


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_audit_digest(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(service.audit_digest())
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run registry and proposal store invariant checks."""
    service = _make_service(args)
    errors = service.check_invariants()
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1
    print("Invariant check passed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="regent",
        description="Regent — weighted multi-signature governance CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory (default: data/)",
    )
    parser.add_argument(
        "--action-set",
        default="roles",
        choices=sorted(ACTION_SETS),
        help="Which managed resource to govern (default: roles)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log engine activity")
    sub = parser.add_subparsers(dest="command")

    # init
    p_init = sub.add_parser("init", help="Seed the signer set")
    p_init.add_argument("--seed", required=True, help="Seed signer address")
    p_init.add_argument(
        "--administrator", required=True, help="Resource administrator address",
    )

    # propose-rotation
    p_rot = sub.add_parser("propose-rotation", help="Propose a new signer set")
    p_rot.add_argument("--caller", required=True, help="Proposing signer address")
    p_rot.add_argument("--signers", required=True, help="Comma-separated addresses")
    p_rot.add_argument("--weights", required=True, help="Comma-separated weights")
    p_rot.add_argument("--threshold", required=True, type=int, help="Approval threshold")

    # propose-action
    p_act = sub.add_parser("propose-action", help="Propose a resource action")
    p_act.add_argument("--caller", required=True, help="Proposing signer address")
    p_act.add_argument(
        "--kind", required=True,
        choices=[k.value for k in ActionKind if k != ActionKind.ROTATE_SIGNERS],
        help="Action kind",
    )
    p_act.add_argument(
        "--param", action="append",
        help="Action parameter as key=value (repeatable)",
    )
    p_act.add_argument("--params-json", help="Action parameters as a JSON object")

    # approve / cancel
    for name, help_text in (
        ("approve", "Approve a proposal"),
        ("cancel", "Cancel a proposal you created"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--caller", required=True, help="Signer address")
        p.add_argument("--id", required=True, type=int, help="Proposal ID")

    # show
    p_show = sub.add_parser("show", help="Show a proposal")
    p_show.add_argument("--id", required=True, type=int, help="Proposal ID")

    # signers / weight
    sub.add_parser("signers", help="List current signers and weights")
    p_weight = sub.add_parser("weight", help="Show an identity's signer weight")
    p_weight.add_argument("--identity", required=True, help="Address to look up")

    sub.add_parser("status", help="Show engine status")
    sub.add_parser("audit-digest", help="Print the audit log digest")
    sub.add_parser("check-invariants", help="Run engine invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "init": cmd_init,
        "propose-rotation": cmd_propose_rotation,
        "propose-action": cmd_propose_action,
        "approve": cmd_approve,
        "cancel": cmd_cancel,
        "show": cmd_show,
        "signers": cmd_signers,
        "weight": cmd_weight,
        "status": cmd_status,
        "audit-digest": cmd_audit_digest,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (ValueError, OSError) as e:
        # Invalid input or unreadable persisted state
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
