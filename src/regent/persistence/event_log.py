"""Append-only audit log — the public record of every governance transition.

Each state-changing engine operation appends one or more events. Events
are immutable once written and are consumed by external auditors and
indexers, never by the engine itself. The log can be persisted as JSONL
(one JSON object per line) and is verified record by record on reload.

EventLog.digest() folds the ordered record hashes into one value that can
be anchored externally (see regent.crypto.anchor).
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of governance events."""
    ENGINE_INITIALIZED = "engine_initialized"
    PROPOSAL_CREATED = "proposal_created"
    PROPOSAL_APPROVED = "proposal_approved"
    PROPOSAL_COMPLETED = "proposal_completed"
    PROPOSAL_CANCELLED = "proposal_cancelled"
    SIGNER_SET_ROTATED = "signer_set_rotated"


def _event_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable audit event."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_event_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> EventRecord:
        """Rebuild a record from to_dict() output, verifying its hash."""
        expected_hash = _event_hash(
            data["event_id"],
            data["event_kind"],
            data["timestamp_utc"],
            data["actor_id"],
            data["payload"],
        )
        if data["event_hash"] != expected_hash:
            raise ValueError(
                f"event {data['event_id']} stored hash {data['event_hash']} "
                f"!= computed {expected_hash}"
            )
        return EventRecord(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            event_hash=data["event_hash"],
        )


class EventLog:
    """Append-only event log with optional JSONL persistence."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for_proposal(self, proposal_id: int) -> list[EventRecord]:
        return [e for e in self._events if e.payload.get("proposal_id") == proposal_id]

    def digest(self) -> str:
        """SHA-256 over the ordered event hashes. Empty log hashes b''."""
        h = hashlib.sha256()
        for e in self._events:
            h.update(e.event_hash.removeprefix("sha256:").encode("utf-8"))
        return f"sha256:{h.hexdigest()}"

    def has_event(self, event_id: str) -> bool:
        return event_id in self._event_ids

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs (replay protection on recovery).
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                try:
                    record = EventRecord.from_dict(data)
                except ValueError as e:
                    raise ValueError(f"Integrity check failed (line {line_num}): {e}") from None
                self._events.append(record)
                self._event_ids.add(event_id)
