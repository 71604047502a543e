"""Proposal store — sole owner of proposal records, digests and approval flags.

Ids are dense and start at 1. Each proposal's integrity digest is computed
once at creation and kept in a separate table, so tampering with a stored
record cannot also update its digest. The approval table records which
signer has approved which proposal.

The store enforces no lifecycle rules; the engine decides what is allowed
and calls the mutators here.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any, Optional

from regent.crypto.digest import digests_match, proposal_digest
from regent.errors import IntegrityError, ProposalNotFoundError
from regent.models.governance import GovernanceAction, Proposal, action_from_params


class ProposalStore:
    """Proposal table, digest table and approval table for one engine."""

    def __init__(self, domain: str) -> None:
        self._domain = domain
        self._proposals: dict[int, Proposal] = {}
        self._digests: dict[int, str] = {}
        self._approvals: set[tuple[str, int]] = set()
        self._next_id = 1

    @classmethod
    def from_records(cls, domain: str, data: dict[str, Any]) -> ProposalStore:
        """Restore a store from to_records() output.

        Digests are loaded as stored, not recomputed: a record edited on
        disk is caught by verify_digest() at the next approval.
        """
        store = cls(domain)
        for p in data.get("proposals", []):
            proposal = Proposal(
                proposal_id=p["proposal_id"],
                action=action_from_params(p["kind"], p["params"]),
                creator=p["creator"],
                created_utc=datetime.fromisoformat(p["created_utc"]),
                approved_weight=p["approved_weight"],
                approvers=list(p["approvers"]),
                completed=p["completed"],
                cancelled=p["cancelled"],
                completed_utc=(
                    datetime.fromisoformat(p["completed_utc"])
                    if p.get("completed_utc") else None
                ),
                cancelled_utc=(
                    datetime.fromisoformat(p["cancelled_utc"])
                    if p.get("cancelled_utc") else None
                ),
            )
            store._proposals[proposal.proposal_id] = proposal
            store._digests[proposal.proposal_id] = p["digest"]
            for signer in proposal.approvers:
                store._approvals.add((signer, proposal.proposal_id))
        store._next_id = data.get("next_id", len(store._proposals) + 1)
        return store

    @property
    def domain(self) -> str:
        return self._domain

    @property
    def next_id(self) -> int:
        return self._next_id

    @property
    def count(self) -> int:
        return len(self._proposals)

    def create(
        self,
        action: GovernanceAction,
        creator: str,
        creator_weight: int,
        now: datetime,
    ) -> int:
        """Store a new proposal with the creator as its first approver."""
        proposal_id = self._next_id
        proposal = Proposal(
            proposal_id=proposal_id,
            action=action,
            creator=creator,
            created_utc=now,
            approved_weight=creator_weight,
            approvers=[creator],
        )
        self._proposals[proposal_id] = proposal
        self._digests[proposal_id] = proposal_digest(self._domain, proposal_id, action)
        self._approvals.add((creator, proposal_id))
        self._next_id += 1
        return proposal_id

    def discard_latest(self, proposal_id: int) -> None:
        """Undo the most recent create(). Used when creation must roll back."""
        if proposal_id != self._next_id - 1 or proposal_id not in self._proposals:
            raise ValueError(f"Proposal {proposal_id} is not the latest proposal")
        proposal = self._proposals.pop(proposal_id)
        self._digests.pop(proposal_id, None)
        for signer in proposal.approvers:
            self._approvals.discard((signer, proposal_id))
        self._next_id -= 1

    def get(self, proposal_id: int) -> Proposal:
        """Return a copy of the proposal, or the default view if absent."""
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            return Proposal()
        return dataclasses.replace(proposal, approvers=list(proposal.approvers))

    def load(self, proposal_id: int) -> Proposal:
        """Return the live record. Raises ProposalNotFoundError."""
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    def list_proposals(self) -> list[Proposal]:
        return [self.get(pid) for pid in sorted(self._proposals)]

    def digest_of(self, proposal_id: int) -> Optional[str]:
        return self._digests.get(proposal_id)

    def verify_digest(self, proposal_id: int) -> str:
        """Recompute the digest from the stored action and compare.

        Returns the digest. Raises IntegrityError on mismatch.
        """
        proposal = self.load(proposal_id)
        stored = self._digests.get(proposal_id, "")
        actual = proposal_digest(self._domain, proposal_id, proposal.action)
        if not digests_match(stored, actual):
            raise IntegrityError(
                f"Integrity check failed for proposal {proposal_id}: "
                f"stored digest {stored} != computed {actual}"
            )
        return stored

    def has_approved(self, signer: str, proposal_id: int) -> bool:
        return (signer, proposal_id) in self._approvals

    def record_approval(self, proposal_id: int, signer: str, weight: int) -> int:
        """Add ``weight`` to the tally. Returns the new accumulated weight."""
        proposal = self.load(proposal_id)
        proposal.approved_weight += weight
        proposal.approvers.append(signer)
        self._approvals.add((signer, proposal_id))
        return proposal.approved_weight

    def undo_approval(self, proposal_id: int, signer: str, weight: int) -> None:
        proposal = self.load(proposal_id)
        if not proposal.approvers or proposal.approvers[-1] != signer:
            raise ValueError(
                f"{signer} is not the latest approver of proposal {proposal_id}"
            )
        proposal.approvers.pop()
        proposal.approved_weight -= weight
        self._approvals.discard((signer, proposal_id))

    def mark_completed(self, proposal_id: int, now: datetime) -> None:
        proposal = self.load(proposal_id)
        proposal.completed = True
        proposal.completed_utc = now

    def clear_completed(self, proposal_id: int) -> None:
        proposal = self.load(proposal_id)
        proposal.completed = False
        proposal.completed_utc = None

    def mark_cancelled(self, proposal_id: int, now: datetime) -> None:
        proposal = self.load(proposal_id)
        proposal.cancelled = True
        proposal.cancelled_utc = now

    def check_invariants(self) -> list[str]:
        """Return invariant violations (empty = healthy)."""
        errors: list[str] = []
        ids = sorted(self._proposals)
        if ids != list(range(1, len(ids) + 1)):
            errors.append(f"Proposal ids are not dense from 1: {ids}")
        if self._next_id != len(ids) + 1:
            errors.append(f"next_id {self._next_id} != {len(ids) + 1}")
        for pid in ids:
            proposal = self._proposals[pid]
            if proposal.completed and proposal.cancelled:
                errors.append(f"Proposal {pid} is both completed and cancelled")
            if len(set(proposal.approvers)) != len(proposal.approvers):
                errors.append(f"Proposal {pid} has a repeated approver")
            for signer in proposal.approvers:
                if (signer, pid) not in self._approvals:
                    errors.append(f"Proposal {pid} approver {signer} has no approval flag")
            try:
                self.verify_digest(pid)
            except IntegrityError as e:
                errors.append(str(e))
        return errors

    def to_records(self) -> dict[str, Any]:
        records: list[dict[str, Any]] = []
        for pid in sorted(self._proposals):
            p = self._proposals[pid]
            records.append({
                "proposal_id": p.proposal_id,
                "kind": p.action.kind.value,
                "params": p.action.params(),
                "creator": p.creator,
                "created_utc": p.created_utc.isoformat(),
                "approved_weight": p.approved_weight,
                "approvers": list(p.approvers),
                "completed": p.completed,
                "cancelled": p.cancelled,
                "completed_utc": (
                    p.completed_utc.isoformat() if p.completed_utc else None
                ),
                "cancelled_utc": (
                    p.cancelled_utc.isoformat() if p.cancelled_utc else None
                ),
                "digest": self._digests.get(pid, ""),
            })
        return {"next_id": self._next_id, "proposals": records}
