"""Regent service — facade over one governance engine and its resource.

This is the primary interface for programmatic and CLI access. It wires:
- the GovernanceEngine (signer registry, proposal store, dispatcher),
- the managed resource selected by the action set,
- the append-only audit log,
- the JSON state snapshot.

All operations return a ServiceResult. Engine errors are reported with
their category code (authorization, state, validation, integrity,
downstream). Audit events are written by the engine as each transition
commits; the snapshot is written afterwards. A snapshot write failure does
not undo a committed transition: the result carries a warning and the
service is flagged as persistence-degraded. An audit log write failure is
treated the same way: the transition stands, the snapshot is still written,
the unwritten events stay queued for the next write and the service is
flagged as audit-degraded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from regent.errors import GovernanceError
from regent.governance.engine import GovernanceEngine
from regent.models.governance import Proposal, action_from_params
from regent.models.identity import NULL_IDENTITY
from regent.persistence.event_log import EventLog
from regent.persistence.state_store import StateStore
from regent.policy.resolver import PolicyResolver
from regent.resource.assets import ASSET_ACTIONS, AssetRegistry
from regent.resource.base import ActionSet, InMemoryResource
from regent.resource.roles import ROLE_ACTIONS, RegionRegistry

logger = logging.getLogger(__name__)

ACTION_SETS: dict[str, ActionSet] = {
    ROLE_ACTIONS.name: ROLE_ACTIONS,
    ASSET_ACTIONS.name: ASSET_ACTIONS,
}

_RESOURCE_TYPES: dict[str, type] = {
    ROLE_ACTIONS.name: RegionRegistry,
    ASSET_ACTIONS.name: AssetRegistry,
}


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def proposal_to_dict(proposal: Proposal) -> dict[str, Any]:
    """Plain-data view of a proposal for results and CLI output."""
    return {
        "proposal_id": proposal.proposal_id,
        "exists": proposal.exists,
        "kind": proposal.kind.value if proposal.kind else None,
        "params": proposal.action.params() if proposal.action else {},
        "creator": proposal.creator,
        "created_utc": proposal.created_utc.isoformat() if proposal.created_utc else None,
        "approved_weight": proposal.approved_weight,
        "approvers": list(proposal.approvers),
        "completed": proposal.completed,
        "cancelled": proposal.cancelled,
        "completed_utc": proposal.completed_utc.isoformat() if proposal.completed_utc else None,
        "cancelled_utc": proposal.cancelled_utc.isoformat() if proposal.cancelled_utc else None,
    }


class RegentService:
    """Governance engine facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = RegentService(resolver, "roles", administrator=admin)

        service.initialize(seed)
        result = service.propose_action(seed, "add_region", {"region_id": "eu"})
        result = service.approve(other_signer, result.data["proposal_id"])

    Persistence (optional):
        service = RegentService(resolver, "roles", administrator=admin,
                                event_log=log, state_store=store)
        # State is loaded on construction and saved after each mutation.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        action_set: str = ROLE_ACTIONS.name,
        administrator: str = NULL_IDENTITY,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        resource: Optional[InMemoryResource] = None,
    ) -> None:
        if action_set not in ACTION_SETS:
            raise ValueError(
                f"Unknown action set {action_set!r}; expected one of "
                f"{sorted(ACTION_SETS)}"
            )
        self._resolver = resolver
        self._action_set = ACTION_SETS[action_set]
        self._event_log = event_log
        self._state_store = state_store
        self._persistence_degraded = False
        self._audit_degraded = False

        snapshot = state_store.load() if state_store is not None else None
        if snapshot is not None:
            if snapshot.get("action_set") != action_set:
                raise ValueError(
                    f"State snapshot belongs to the {snapshot.get('action_set')!r} "
                    f"engine, not {action_set!r}"
                )
            self._resource = _RESOURCE_TYPES[action_set].from_records(snapshot["resource"])
            self._engine = GovernanceEngine.from_records(
                resolver, self._resource, self._action_set,
                snapshot["engine"], event_log=event_log,
            )
        else:
            self._resource = (
                resource if resource is not None
                else _RESOURCE_TYPES[action_set](administrator)
            )
            self._engine = GovernanceEngine(
                resolver, self._resource, self._action_set, event_log=event_log,
            )

    @property
    def engine(self) -> GovernanceEngine:
        return self._engine

    @property
    def resource(self) -> InMemoryResource:
        return self._resource

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def initialize(self, seed_identity: str, now: Optional[datetime] = None) -> ServiceResult:
        return self._run(
            lambda: {"seed": self._engine.initialize(seed_identity, now=now)},
        )

    def propose_rotation(
        self,
        caller: str,
        signers: list[str],
        weights: list[int],
        threshold: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            pid = self._engine.propose_rotation(caller, signers, weights, threshold, now=now)
            return self._proposal_data(pid, now)
        return self._run(_op)

    def propose_action(
        self,
        caller: str,
        kind: str,
        params: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            action = action_from_params(kind, params)
            pid = self._engine.propose_action(caller, action, now=now)
            return self._proposal_data(pid, now)
        return self._run(_op)

    def approve(
        self,
        caller: str,
        proposal_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._engine.approve(caller, proposal_id, now=now)
            return self._proposal_data(proposal_id, now)
        return self._run(_op)

    def cancel(
        self,
        caller: str,
        proposal_id: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            self._engine.cancel(caller, proposal_id, now=now)
            return self._proposal_data(proposal_id, now)
        return self._run(_op)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_proposal(self, proposal_id: int) -> Proposal:
        return self._engine.get_proposal(proposal_id)

    def get_signers(self) -> list[str]:
        return self._engine.get_signers()

    def weight_of(self, identity: str) -> ServiceResult:
        try:
            valid, weight = self._engine.weight_of(identity)
        except GovernanceError as e:
            return ServiceResult(success=False, errors=[str(e)], data={"error": e.code})
        return ServiceResult(success=True, data={"valid": valid, "weight": weight})

    def audit_digest(self) -> Optional[str]:
        """Digest of the audit log, or None if no log is wired."""
        if self._event_log is None:
            return None
        return self._event_log.digest()

    def check_invariants(self) -> list[str]:
        return self._engine.check_invariants()

    def status(self, now: Optional[datetime] = None) -> dict[str, Any]:
        status = self._engine.status(now=now)
        status["resource"] = self._resource.to_records()
        status["audit_events"] = self._event_log.count if self._event_log else 0
        status["persistence_degraded"] = self._persistence_degraded
        status["audit_degraded"] = self._audit_degraded
        return status

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _proposal_data(
        self, proposal_id: int, now: Optional[datetime],
    ) -> dict[str, Any]:
        data = proposal_to_dict(self._engine.get_proposal(proposal_id))
        data["digest"] = self._engine.digest_of(proposal_id)
        data["state"] = self._engine.proposal_state(proposal_id, now).value
        return data

    def _run(self, op: Callable[[], dict[str, Any]]) -> ServiceResult:
        """Run an engine mutation and persist on success."""
        try:
            data = op()
        except GovernanceError as e:
            logger.info("Operation rejected (%s): %s", e.code, e)
            return ServiceResult(success=False, errors=[str(e)], data={"error": e.code})
        warnings = [
            w for w in (self._check_audit(), self._safe_persist_post_audit()) if w
        ]
        if warnings:
            data["warning"] = "; ".join(warnings)
        return ServiceResult(success=True, data=data)

    def _check_audit(self) -> Optional[str]:
        """Report events of a committed transition that did not reach the log.

        The transition is not rolled back and the snapshot is still written.
        The events stay queued in the engine and are retried on the next
        mutation.
        """
        failure = self._engine.take_audit_failure()
        if failure is None:
            return None
        self._audit_degraded = True
        return (
            f"Audit log degraded: {failure}. Transition committed; events "
            f"will be retried on the next write"
        )

    def _persist_state(self) -> None:
        if self._state_store is None:
            return
        self._state_store.save(
            self._action_set.name,
            self._engine.to_records(),
            self._resource.to_records(),
        )

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after audit events have been committed.

        Does not roll back in-memory state: the audit trail already records
        the transition. On failure the service is flagged degraded and a
        warning string is returned.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.error("State snapshot write failed: %s", e)
            return (
                f"Persistence degraded: {e} — transition committed in audit "
                f"trail but state snapshot is stale"
            )
