"""JSON state snapshot for one governance engine and its managed resource.

The snapshot is rewritten in full after every mutation. It is written to a
temporary file and renamed into place so a crash never leaves a truncated
snapshot behind.

The snapshot is not trusted: proposal digests are stored, not recomputed,
on load, so an edited proposal is rejected at its next approval.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

SNAPSHOT_VERSION = 1


class StateStore:
    """Reads and writes the engine snapshot file."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    def load(self) -> Optional[dict[str, Any]]:
        """Return the snapshot, or None if nothing has been saved yet."""
        if not self._storage_path.exists():
            return None
        with self._storage_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(
                f"Unsupported state snapshot version {version!r} "
                f"(expected {SNAPSHOT_VERSION})"
            )
        return data

    def save(
        self,
        action_set: str,
        engine: dict[str, Any],
        resource: dict[str, Any],
    ) -> None:
        data = {
            "version": SNAPSHOT_VERSION,
            "action_set": action_set,
            "engine": engine,
            "resource": resource,
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self._storage_path)
