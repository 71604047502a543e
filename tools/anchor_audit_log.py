#!/usr/bin/env python3
"""Anchor the Regent audit log digest on Ethereum Sepolia.

Recomputes the digest of an engine's events.jsonl (verifying every record
on load) and embeds it in a self-send transaction, giving a public,
timestamped witness of the audit trail as it stands now.

Usage:
    python3 tools/anchor_audit_log.py
    python3 tools/anchor_audit_log.py --action-set assets "Quarterly checkpoint"

Requires:
    SEPOLIA_RPC_URL and PRIVATE_KEY in a .env file at the project root.
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add src to path for regent imports
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from dotenv import load_dotenv
from regent.crypto.anchor import anchor_digest
from regent.persistence.event_log import EventLog


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--data", type=Path, default=ROOT / "data")
    parser.add_argument("--action-set", default="roles")
    parser.add_argument("description", nargs="*", help="Optional anchor note")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    load_dotenv(ROOT / ".env")
    rpc_url = os.getenv("SEPOLIA_RPC_URL")
    private_key = os.getenv("PRIVATE_KEY") or os.getenv("SEPOLIA_PRIVATE_KEY")
    if not rpc_url or not private_key:
        print("ERROR: Missing SEPOLIA_RPC_URL and/or PRIVATE_KEY in .env")
        return 1

    log_path = args.data / args.action_set / "events.jsonl"
    if not log_path.exists():
        print(f"ERROR: Audit log not found: {log_path}")
        return 1

    event_log = EventLog(storage_path=log_path)
    digest = event_log.digest()
    description = " ".join(args.description)

    print("=" * 60)
    print("REGENT — AUDIT LOG ANCHOR")
    print("=" * 60)
    print(f"  Audit log:   {log_path}")
    print(f"  Events:      {event_log.count}")
    print(f"  Digest:      {digest}")
    if description:
        print(f"  Note:        {description}")
    print()

    record = anchor_digest(digest, event_log.count, rpc_url, private_key)

    entry = record.to_dict()
    entry["action_set"] = args.action_set
    entry["description"] = description
    entry["recorded_utc"] = datetime.now(timezone.utc).isoformat()
    anchors_file = args.data / "anchors.jsonl"
    anchors_file.parent.mkdir(parents=True, exist_ok=True)
    with anchors_file.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry, sort_keys=True) + "\n")

    print(f"  Tx:          {record.tx_hash}")
    print(f"  Eth Block:   {record.block_number}")
    print(f"  Explorer:    {record.explorer_url}")
    print(f"  Logged:      {anchors_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
