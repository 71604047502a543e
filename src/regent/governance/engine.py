"""Governance engine — the proposal lifecycle controller.

One engine instance governs one managed resource through one action set.
It owns a SignerRegistry (the trust root), a ProposalStore, and an
ExecutionDispatcher, and is the only public way to change any of them.

Proposal state machine:
    OPEN → COMPLETED   accumulated weight >= threshold; action dispatched
    OPEN → CANCELLED   creator withdrew it
    OPEN reads as EXPIRED once older than the expiration window. Expiry is
    evaluated on access; there is no background sweep.

Rules:
- Only valid signers create and approve. Elevated kinds also require the
  creator to be the resource's current administrator, checked at creation
  only.
- The creator's current weight is recorded as the first approval.
- Each approval adds the approver's weight as it is *now*. Weights are
  never cached on the proposal, so a rotation between two approvals changes
  what later approvals on an older proposal contribute.
- The stored integrity digest is re-verified on every approval.
- Crossing the threshold completes the proposal and dispatches its action
  inside the same call. Dispatch failure rolls back the approval (or the
  creation) entirely.
- Every successful transition appends audit events once it has committed.
  If the log cannot be written the transition stands; its events are kept
  and retried on the next write.

Operations run one at a time; the surrounding environment serializes
callers.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from regent.errors import (
    AlreadyApprovedError,
    AuthorizationError,
    DownstreamError,
    ProposalClosedError,
    ProposalExpiredError,
    ValidationError,
)
from regent.governance.dispatcher import ExecutionDispatcher
from regent.governance.proposal_store import ProposalStore
from regent.governance.signer_registry import SignerRegistry
from regent.models.governance import (
    ActionKind,
    GovernanceAction,
    Proposal,
    ProposalState,
    RotateSigners,
)
from regent.models.identity import normalize_identity
from regent.persistence.event_log import EventKind, EventLog, EventRecord
from regent.policy.resolver import PolicyResolver
from regent.resource.base import ActionSet, ManagedResource

logger = logging.getLogger(__name__)


class GovernanceEngine:
    """Weighted multi-signature proposal engine.

    Usage:
        engine = GovernanceEngine(resolver, RegionRegistry(admin), ROLE_ACTIONS)
        engine.initialize(seed)
        pid = engine.propose_rotation(seed, [a, b, c], [1, 2, 2], 3)
        pid = engine.propose_action(a, AddRegion("eu-west"))
        engine.approve(b, pid)     # completes and dispatches at threshold
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        resource: ManagedResource,
        action_set: ActionSet,
        event_log: Optional[EventLog] = None,
        registry: Optional[SignerRegistry] = None,
        store: Optional[ProposalStore] = None,
        unwritten_events: Optional[list[EventRecord]] = None,
    ) -> None:
        self._resolver = resolver
        self._resource = resource
        self._action_set = action_set
        self._window = resolver.expiration_window()
        self._registry = registry if registry is not None else SignerRegistry()
        self._store = (
            store if store is not None
            else ProposalStore(resolver.domain_tag(action_set.name))
        )
        self._dispatcher = ExecutionDispatcher(self._registry, resource)
        self._event_log = event_log
        self._pending_events: list[EventRecord] = [
            e for e in unwritten_events or []
            if event_log is None or not event_log.has_event(e.event_id)
        ]
        self._event_counter = (
            event_log.count + len(self._pending_events) if event_log is not None else 0
        )
        self._audit_failure: Optional[str] = None

    @classmethod
    def from_records(
        cls,
        resolver: PolicyResolver,
        resource: ManagedResource,
        action_set: ActionSet,
        data: dict[str, Any],
        event_log: Optional[EventLog] = None,
    ) -> GovernanceEngine:
        """Restore an engine from to_records() output."""
        return cls(
            resolver,
            resource,
            action_set,
            event_log=event_log,
            registry=SignerRegistry.from_records(data.get("registry", {})),
            store=ProposalStore.from_records(
                resolver.domain_tag(action_set.name), data.get("store", {}),
            ),
            unwritten_events=[
                EventRecord.from_dict(e) for e in data.get("unwritten_events", [])
            ],
        )

    # ------------------------------------------------------------------
    # Initialization and signer queries
    # ------------------------------------------------------------------

    def initialize(self, seed_identity: str, now: Optional[datetime] = None) -> str:
        """Seed the signer set with one signer of weight 1, threshold 1."""
        now = now or datetime.now(timezone.utc)
        seed = self._registry.initialize(seed_identity)
        logger.info("Engine %s initialized with seed signer %s", self.domain, seed)
        self._emit(EventKind.ENGINE_INITIALIZED, seed, {
            "domain": self.domain,
            "signers": [seed],
            "weights": [1],
            "threshold": 1,
        }, now)
        self._flush_events()
        return seed

    @property
    def initialized(self) -> bool:
        return self._registry.initialized

    @property
    def domain(self) -> str:
        return self._store.domain

    @property
    def action_set(self) -> ActionSet:
        return self._action_set

    @property
    def threshold(self) -> int:
        return self._registry.threshold

    @property
    def total_weight(self) -> int:
        return self._registry.total_weight

    def get_signers(self) -> list[str]:
        return self._registry.current_signers()

    def weight_of(self, identity: str) -> tuple[bool, int]:
        return self._registry.weight_of(identity)

    # ------------------------------------------------------------------
    # Proposal creation
    # ------------------------------------------------------------------

    def propose_rotation(
        self,
        caller: str,
        signers: list[str],
        weights: list[int],
        threshold: int,
        now: Optional[datetime] = None,
    ) -> int:
        """Propose replacing the whole signer set. Returns the proposal id.

        Rotation parameters are validated here; an invalid rotation is
        never stored.
        """
        self._registry.require_initialized()
        caller_id, _ = self._require_signer(caller)
        action = RotateSigners(tuple(signers), tuple(weights), threshold)
        return self._propose(caller_id, action, now)

    def propose_action(
        self,
        caller: str,
        action: GovernanceAction,
        now: Optional[datetime] = None,
    ) -> int:
        """Propose a resource action (or a prebuilt rotation). Returns the id."""
        self._registry.require_initialized()
        caller_id, _ = self._require_signer(caller)
        return self._propose(caller_id, action, now)

    def _propose(
        self,
        caller: str,
        action: GovernanceAction,
        now: Optional[datetime],
    ) -> int:
        now = now or datetime.now(timezone.utc)
        if not self._action_set.allows(action.kind):
            raise ValidationError(
                f"Action {action.kind.value} is not accepted by the "
                f"{self._action_set.name} engine"
            )
        if self._action_set.requires_admin(action.kind):
            self._require_administrator(caller, action.kind)

        _, weight = self._registry.weight_of(caller)
        proposal_id = self._store.create(action, caller, weight, now)
        effect: Optional[dict[str, Any]] = None
        if weight >= self._registry.threshold:
            try:
                effect = self._complete(proposal_id, now)
            except Exception:
                self._store.discard_latest(proposal_id)
                raise

        logger.info(
            "Proposal %d (%s) created by %s with weight %d",
            proposal_id, action.kind.value, caller, weight,
        )
        self._emit(EventKind.PROPOSAL_CREATED, caller, {
            "proposal_id": proposal_id,
            "kind": action.kind.value,
            "params": action.params(),
            "digest": self._store.digest_of(proposal_id),
            "approved_weight": weight,
        }, now)
        if effect is not None:
            self._emit_completion(proposal_id, caller, effect, now)
        self._flush_events()
        return proposal_id

    # ------------------------------------------------------------------
    # Approval and cancellation
    # ------------------------------------------------------------------

    def approve(
        self,
        caller: str,
        proposal_id: int,
        now: Optional[datetime] = None,
    ) -> Proposal:
        """Add the caller's current weight to a proposal.

        Returns a copy of the updated proposal. If the tally reaches the
        threshold the proposal is completed and its action dispatched
        before this returns.
        """
        now = now or datetime.now(timezone.utc)
        self._registry.require_initialized()
        proposal = self._store.load(proposal_id)
        caller_id, weight = self._require_signer(caller)
        self._require_open(proposal, now)
        if self._store.has_approved(caller_id, proposal_id):
            raise AlreadyApprovedError(caller_id, proposal_id)
        digest = self._store.verify_digest(proposal_id)

        tally = self._store.record_approval(proposal_id, caller_id, weight)
        effect: Optional[dict[str, Any]] = None
        if tally >= self._registry.threshold:
            try:
                effect = self._complete(proposal_id, now)
            except Exception:
                self._store.undo_approval(proposal_id, caller_id, weight)
                raise

        logger.info(
            "Proposal %d approved by %s (+%d, total %d/%d)",
            proposal_id, caller_id, weight, tally, self._registry.threshold,
        )
        self._emit(EventKind.PROPOSAL_APPROVED, caller_id, {
            "proposal_id": proposal_id,
            "weight": weight,
            "approved_weight": tally,
            "digest": digest,
        }, now)
        if effect is not None:
            self._emit_completion(proposal_id, caller_id, effect, now)
        self._flush_events()
        return self._store.get(proposal_id)

    def cancel(
        self,
        caller: str,
        proposal_id: int,
        now: Optional[datetime] = None,
    ) -> Proposal:
        """Withdraw an open proposal. Only its creator may cancel it."""
        now = now or datetime.now(timezone.utc)
        self._registry.require_initialized()
        proposal = self._store.load(proposal_id)
        caller_id = self._normalize_caller(caller)
        if caller_id != proposal.creator:
            raise AuthorizationError(
                f"Only the creator {proposal.creator} may cancel proposal {proposal_id}"
            )
        self._require_open(proposal, now)

        self._store.mark_cancelled(proposal_id, now)
        logger.info("Proposal %d cancelled by %s", proposal_id, caller_id)
        self._emit(EventKind.PROPOSAL_CANCELLED, caller_id, {
            "proposal_id": proposal_id,
            "kind": proposal.action.kind.value,
            "approved_weight": proposal.approved_weight,
        }, now)
        self._flush_events()
        return self._store.get(proposal_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_proposal(self, proposal_id: int) -> Proposal:
        """Return a copy of the proposal; ``exists`` is False if never created."""
        return self._store.get(proposal_id)

    def proposal_state(
        self,
        proposal_id: int,
        now: Optional[datetime] = None,
    ) -> Optional[ProposalState]:
        """Lifecycle state as of ``now``, or None for an unknown id."""
        proposal = self._store.get(proposal_id)
        if not proposal.exists:
            return None
        return proposal.state(now or datetime.now(timezone.utc), self._window)

    def list_proposals(
        self,
        state: Optional[ProposalState] = None,
        now: Optional[datetime] = None,
    ) -> list[Proposal]:
        proposals = self._store.list_proposals()
        if state is None:
            return proposals
        now = now or datetime.now(timezone.utc)
        return [p for p in proposals if p.state(now, self._window) == state]

    def has_approved(self, signer: str, proposal_id: int) -> bool:
        return self._store.has_approved(normalize_identity(signer), proposal_id)

    def digest_of(self, proposal_id: int) -> Optional[str]:
        return self._store.digest_of(proposal_id)

    def check_invariants(self) -> list[str]:
        """Return all registry and store invariant violations."""
        return self._registry.check_invariants() + self._store.check_invariants()

    @property
    def unwritten_events(self) -> int:
        """Events of committed transitions still waiting for the audit log."""
        return len(self._pending_events)

    def take_audit_failure(self) -> Optional[str]:
        """Return and clear the last audit write failure, if any."""
        failure, self._audit_failure = self._audit_failure, None
        return failure

    def status(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        by_state: dict[str, int] = {}
        for p in self._store.list_proposals():
            key = p.state(now, self._window).value
            by_state[key] = by_state.get(key, 0) + 1
        return {
            "domain": self.domain,
            "action_set": self._action_set.name,
            "initialized": self.initialized,
            "signers": self._registry.current_signers(),
            "total_weight": self._registry.total_weight,
            "threshold": self._registry.threshold,
            "proposals": {"total": self._store.count, "by_state": by_state},
            "expiration_window_days": self._window.days,
            "unwritten_audit_events": len(self._pending_events),
        }

    def to_records(self) -> dict[str, Any]:
        return {
            "registry": self._registry.to_records(),
            "store": self._store.to_records(),
            "unwritten_events": [e.to_dict() for e in self._pending_events],
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _normalize_caller(self, caller: str) -> str:
        try:
            return normalize_identity(caller, "caller")
        except ValidationError as e:
            raise AuthorizationError(e.message) from None

    def _require_signer(self, caller: str) -> tuple[str, int]:
        caller_id = self._normalize_caller(caller)
        valid, weight = self._registry.weight_of(caller_id)
        if not valid:
            raise AuthorizationError(f"{caller_id} is not a valid signer")
        return caller_id, weight

    def _require_administrator(self, caller: str, kind: ActionKind) -> None:
        try:
            admin = normalize_identity(self._resource.current_administrator())
        except Exception as e:
            raise DownstreamError(
                f"Could not resolve the managed resource administrator: {e}"
            ) from e
        if caller != admin:
            raise AuthorizationError(
                f"Only the resource administrator may propose {kind.value}"
            )

    def _require_open(self, proposal: Proposal, now: datetime) -> None:
        if proposal.completed:
            raise ProposalClosedError(
                f"Proposal {proposal.proposal_id} is already completed"
            )
        if proposal.cancelled:
            raise ProposalClosedError(
                f"Proposal {proposal.proposal_id} is cancelled"
            )
        if proposal.is_expired(now, self._window):
            raise ProposalExpiredError(proposal.proposal_id)

    def _complete(self, proposal_id: int, now: datetime) -> dict[str, Any]:
        """Mark completed and dispatch as one unit."""
        proposal = self._store.load(proposal_id)
        self._store.mark_completed(proposal_id, now)
        try:
            return self._dispatcher.dispatch(proposal.action)
        except Exception:
            self._store.clear_completed(proposal_id)
            raise

    def _emit_completion(
        self,
        proposal_id: int,
        actor: str,
        effect: dict[str, Any],
        now: datetime,
    ) -> None:
        proposal = self._store.get(proposal_id)
        logger.info(
            "Proposal %d (%s) completed with weight %d",
            proposal_id, proposal.kind.value, proposal.approved_weight,
        )
        self._emit(EventKind.PROPOSAL_COMPLETED, actor, {
            "proposal_id": proposal_id,
            "kind": proposal.kind.value,
            "approved_weight": proposal.approved_weight,
            "approvers": list(proposal.approvers),
            "effect": effect,
        }, now)
        if proposal.kind == ActionKind.ROTATE_SIGNERS:
            self._emit(EventKind.SIGNER_SET_ROTATED, actor, {
                "proposal_id": proposal_id,
                "previous_signers": effect["previous_signers"],
                "signers": effect["signers"],
                "weights": effect["weights"],
                "threshold": effect["threshold"],
            }, now)

    def _emit(
        self,
        kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        now: datetime,
    ) -> None:
        if self._event_log is None:
            return
        self._event_counter += 1
        self._pending_events.append(EventRecord.create(
            event_id=f"EVT-{self._event_counter:08d}",
            event_kind=kind,
            actor_id=actor,
            payload=payload,
            timestamp_utc=now,
        ))

    def _flush_events(self) -> None:
        """Append buffered events in order, after the transition has committed.

        A write failure does not undo the transition. The unwritten events
        stay buffered and are retried, ahead of newer ones, on the next flush.
        """
        if self._event_log is None:
            return
        while self._pending_events:
            try:
                self._event_log.append(self._pending_events[0])
            except OSError as e:
                self._audit_failure = (
                    f"{len(self._pending_events)} audit event(s) not written: {e}"
                )
                logger.error("Audit log write failed: %s", e)
                return
            self._pending_events.pop(0)
        self._audit_failure = None
