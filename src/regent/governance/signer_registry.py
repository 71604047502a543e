"""Signer registry — the weighted trust root of a governance engine.

Holds the ordered signer list, each signer's weight and validity, the sum
of active weights, and the approval threshold.

Invariants:
- Every identity in the ordered list has a valid entry, and every valid
  entry appears in the list.
- An invalid entry always has weight 0.
- total_weight == sum of valid weights.
- 1 <= threshold <= total_weight once initialized.

The registry is created empty and seeded once by initialize(). After that
it changes only through rotate(), which the execution dispatcher calls for
a completed rotation proposal. Rotation parameters are validated when the
proposal is created, not here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from regent.errors import AlreadyInitializedError, NotInitializedError
from regent.models.identity import normalize_identity, require_identity


@dataclass
class SignerEntry:
    identity: str
    weight: int
    valid: bool


class SignerRegistry:
    """Weighted signer set with full-replacement rotation."""

    def __init__(self) -> None:
        self._signers: list[str] = []
        self._entries: dict[str, SignerEntry] = {}
        self._total_weight = 0
        self._threshold = 0
        self._initialized = False

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> SignerRegistry:
        """Restore a registry from to_records() output."""
        registry = cls()
        registry._initialized = data.get("initialized", False)
        registry._signers = list(data.get("signers", []))
        for e in data.get("entries", []):
            registry._entries[e["identity"]] = SignerEntry(
                identity=e["identity"],
                weight=e["weight"],
                valid=e["valid"],
            )
        registry._total_weight = data.get("total_weight", 0)
        registry._threshold = data.get("threshold", 0)
        return registry

    def initialize(self, seed_identity: str) -> str:
        """Seed the registry with one signer of weight 1 and threshold 1."""
        if self._initialized:
            raise AlreadyInitializedError("Signer registry is already initialized")
        seed = require_identity(seed_identity, "seed identity")
        self._install([seed], [1], 1)
        self._initialized = True
        return seed

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def total_weight(self) -> int:
        return self._total_weight

    @property
    def signer_count(self) -> int:
        return len(self._signers)

    def require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("Signer registry has not been initialized")

    def current_signers(self) -> list[str]:
        return list(self._signers)

    def weight_of(self, identity: str) -> tuple[bool, int]:
        """Return (is_valid, weight). Unknown identities are (False, 0)."""
        entry = self._entries.get(normalize_identity(identity))
        if entry is None:
            return False, 0
        return entry.valid, entry.weight

    def is_signer(self, identity: str) -> bool:
        valid, _ = self.weight_of(identity)
        return valid

    def rotate(
        self,
        new_signers: list[str],
        new_weights: list[int],
        new_threshold: int,
    ) -> None:
        """Replace the whole signer set.

        Every current signer is invalidated (weight 0) before the new set
        is installed. Identities absent from the new set lose all standing.
        """
        self.require_initialized()
        for identity in self._signers:
            entry = self._entries[identity]
            entry.weight = 0
            entry.valid = False
        self._install(list(new_signers), list(new_weights), new_threshold)

    def _install(self, signers: list[str], weights: list[int], threshold: int) -> None:
        for identity, weight in zip(signers, weights):
            self._entries[identity] = SignerEntry(identity=identity, weight=weight, valid=True)
        self._signers = signers
        self._total_weight = sum(weights)
        self._threshold = threshold

    def check_invariants(self) -> list[str]:
        """Return invariant violations (empty = healthy)."""
        errors: list[str] = []
        if not self._initialized:
            return errors
        listed = set(self._signers)
        if len(listed) != len(self._signers):
            errors.append("Signer list contains duplicates")
        for identity in self._signers:
            entry = self._entries.get(identity)
            if entry is None or not entry.valid:
                errors.append(f"Listed signer {identity} has no valid entry")
        for entry in self._entries.values():
            if entry.valid and entry.identity not in listed:
                errors.append(f"Valid entry {entry.identity} missing from signer list")
            if not entry.valid and entry.weight != 0:
                errors.append(f"Invalid signer {entry.identity} has weight {entry.weight}")
        active = sum(e.weight for e in self._entries.values() if e.valid)
        if active != self._total_weight:
            errors.append(
                f"Total weight {self._total_weight} != sum of active weights {active}"
            )
        if not 1 <= self._threshold <= self._total_weight:
            errors.append(
                f"Threshold {self._threshold} out of range (1..{self._total_weight})"
            )
        return errors

    def to_records(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "signers": list(self._signers),
            "entries": [
                {"identity": e.identity, "weight": e.weight, "valid": e.valid}
                for e in self._entries.values()
            ],
            "total_weight": self._total_weight,
            "threshold": self._threshold,
        }
