"""Tests for the governance engine — proves the proposal lifecycle end to end.

Covers seeding, rotation, weighted approval, expiry, cancellation,
creation-time administrator checks, dispatch rollback, integrity
verification and the audit events each transition emits.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from eth_account import Account

from regent.errors import (
    AlreadyApprovedError,
    AlreadyInitializedError,
    AuthorizationError,
    DownstreamError,
    IntegrityError,
    NotInitializedError,
    ProposalClosedError,
    ProposalExpiredError,
    ProposalNotFoundError,
    ResourceError,
    ValidationError,
)
from regent.governance.engine import GovernanceEngine
from regent.models.governance import (
    AddRegion,
    ProposalState,
    RemoveRegion,
    SetAsset,
    ToggleState,
)
from regent.persistence.event_log import EventKind, EventLog
from regent.policy.resolver import PolicyResolver
from regent.resource.assets import ASSET_ACTIONS, AssetRegistry
from regent.resource.roles import ROLE_ACTIONS, RegionRegistry


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _now() -> datetime:
    return datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)


def _addr() -> str:
    return Account.create().address


class CountingRegions(RegionRegistry):
    """Region registry that counts create_region calls."""

    def __init__(self, administrator: str) -> None:
        super().__init__(administrator)
        self.create_calls = 0

    def create_region(self, region_id: str) -> None:
        self.create_calls += 1
        super().create_region(region_id)


class UnreachableAdminRegions(RegionRegistry):
    def current_administrator(self) -> str:
        raise ResourceError("administrator lookup timed out")


class FlakyLog(EventLog):
    """Event log whose first write of ``fail_on`` raises OSError."""

    def __init__(self, fail_on: EventKind, storage_path: Path | None = None) -> None:
        super().__init__(storage_path)
        self.fail_on = fail_on
        self.failed = False

    def append(self, event) -> None:
        if event.event_kind == self.fail_on and not self.failed:
            self.failed = True
            raise OSError("disk full")
        super().append(event)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def seed() -> str:
    return _addr()


@pytest.fixture
def a() -> str:
    return _addr()


@pytest.fixture
def b() -> str:
    return _addr()


@pytest.fixture
def c() -> str:
    return _addr()


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def regions(a: str) -> CountingRegions:
    # a administers the region registry
    return CountingRegions(a)


@pytest.fixture
def engine(
    resolver: PolicyResolver, regions: CountingRegions, event_log: EventLog, seed: str,
) -> GovernanceEngine:
    eng = GovernanceEngine(resolver, regions, ROLE_ACTIONS, event_log=event_log)
    eng.initialize(seed, now=_now())
    return eng


@pytest.fixture
def council(engine: GovernanceEngine, seed: str, a: str, b: str, c: str) -> GovernanceEngine:
    """Engine rotated to {a: 1, b: 2, c: 2} with threshold 3."""
    engine.propose_rotation(seed, [a, b, c], [1, 2, 2], 3, now=_now())
    return engine


class TestInitialize:
    def test_uninitialized_engine_rejects_everything(
        self, resolver: PolicyResolver, regions: CountingRegions, a: str,
    ) -> None:
        eng = GovernanceEngine(resolver, regions, ROLE_ACTIONS)
        with pytest.raises(NotInitializedError):
            eng.propose_action(a, AddRegion("eu"), now=_now())
        with pytest.raises(NotInitializedError):
            eng.approve(a, 1, now=_now())
        with pytest.raises(NotInitializedError):
            eng.cancel(a, 1, now=_now())

    def test_initialize_once(self, engine: GovernanceEngine, seed: str) -> None:
        assert engine.get_signers() == [seed]
        assert engine.threshold == 1
        with pytest.raises(AlreadyInitializedError):
            engine.initialize(_addr(), now=_now())

    def test_domain_comes_from_policy(self, engine: GovernanceEngine) -> None:
        assert engine.domain == "regent.roles.v1"


class TestSeedAction:
    def test_seed_admin_toggle_completes_on_creation(
        self, resolver: PolicyResolver, seed: str,
    ) -> None:
        resource = RegionRegistry(seed)
        eng = GovernanceEngine(resolver, resource, ROLE_ACTIONS)
        eng.initialize(seed, now=_now())

        pid = eng.propose_action(seed, ToggleState(True), now=_now())

        assert pid == 1
        assert resource.paused
        p = eng.get_proposal(pid)
        assert p.completed
        assert p.completed_utc == _now()
        assert eng.proposal_state(pid, _now()) == ProposalState.COMPLETED


class TestRotation:
    def test_seed_rotation_completes_immediately(
        self, council: GovernanceEngine, seed: str, a: str, b: str, c: str,
    ) -> None:
        assert council.get_signers() == [a, b, c]
        assert council.total_weight == 5
        assert council.threshold == 3
        assert council.weight_of(seed) == (False, 0)

    def test_invalid_rotation_is_not_stored(self, council: GovernanceEngine, a: str, b: str) -> None:
        before = council.list_proposals()
        with pytest.raises(ValidationError):
            council.propose_rotation(a, [a, b], [1, 2], 4, now=_now())
        with pytest.raises(ValidationError):
            council.propose_rotation(a, [a, b], [1], 1, now=_now())
        with pytest.raises(ValidationError):
            council.propose_rotation(a, [], [], 1, now=_now())
        assert len(council.list_proposals()) == len(before)
        assert not council.get_proposal(len(before) + 1).exists

    def test_non_signer_cannot_propose(self, council: GovernanceEngine, seed: str) -> None:
        with pytest.raises(AuthorizationError):
            council.propose_rotation(seed, [seed], [1], 1, now=_now())

    def test_malformed_caller_is_unauthorized(self, council: GovernanceEngine, a: str) -> None:
        with pytest.raises(AuthorizationError):
            council.propose_rotation("alice", [a], [1], 1, now=_now())

    def test_rotation_waits_for_threshold(
        self, council: GovernanceEngine, a: str, b: str, c: str,
    ) -> None:
        d = _addr()
        pid = council.propose_rotation(b, [c, d], [1, 1], 2, now=_now())
        assert not council.get_proposal(pid).completed
        council.approve(a, pid, now=_now())
        assert council.get_signers() == [c, d]
        assert council.weight_of(b) == (False, 0)


class TestWeightedApproval:
    def test_completes_when_threshold_crossed(
        self, council: GovernanceEngine, regions: CountingRegions, a: str, b: str,
    ) -> None:
        pid = council.propose_action(a, AddRegion("eu-west"), now=_now())
        p = council.get_proposal(pid)
        assert p.approved_weight == 1
        assert not p.completed
        assert not regions.has_region("eu-west")

        p = council.approve(b, pid, now=_now())

        assert p.completed
        assert p.approved_weight == 3
        assert p.approvers == [a, b]
        assert regions.has_region("eu-west")

    def test_partial_approval_stays_open(self, council: GovernanceEngine, a: str) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        assert council.proposal_state(pid, _now()) == ProposalState.OPEN
        assert council.has_approved(a, pid)

    def test_double_approval_rejected(self, council: GovernanceEngine, a: str) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        with pytest.raises(AlreadyApprovedError):
            council.approve(a, pid, now=_now())
        assert council.get_proposal(pid).approved_weight == 1

    def test_dispatch_fires_exactly_once(
        self, council: GovernanceEngine, regions: CountingRegions, a: str, b: str, c: str,
    ) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        council.approve(b, pid, now=_now())
        with pytest.raises(ProposalClosedError):
            council.approve(c, pid, now=_now())
        assert regions.create_calls == 1
        assert council.get_proposal(pid).approvers == [a, b]

    def test_non_signer_rejected_before_closed_check(
        self, council: GovernanceEngine, a: str, b: str,
    ) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        council.approve(b, pid, now=_now())
        with pytest.raises(AuthorizationError):
            council.approve(_addr(), pid, now=_now())

    def test_unknown_proposal(self, council: GovernanceEngine, a: str) -> None:
        with pytest.raises(ProposalNotFoundError):
            council.approve(a, 99, now=_now())
        assert council.proposal_state(99) is None


class TestExpiry:
    def test_approval_after_window_rejected(
        self, council: GovernanceEngine, a: str, b: str,
    ) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        later = _now() + timedelta(days=8)
        with pytest.raises(ProposalExpiredError):
            council.approve(b, pid, now=later)
        assert council.proposal_state(pid, later) == ProposalState.EXPIRED
        assert not council.get_proposal(pid).completed

    def test_approval_at_window_edge_allowed(
        self, council: GovernanceEngine, a: str, b: str,
    ) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        p = council.approve(b, pid, now=_now() + timedelta(days=7))
        assert p.completed

    def test_list_by_state(self, council: GovernanceEngine, a: str, b: str) -> None:
        old = council.propose_action(a, AddRegion("old"), now=_now() - timedelta(days=10))
        fresh = council.propose_action(a, AddRegion("fresh"), now=_now())
        expired = council.list_proposals(ProposalState.EXPIRED, now=_now())
        open_ = council.list_proposals(ProposalState.OPEN, now=_now())
        assert [p.proposal_id for p in expired] == [old]
        assert [p.proposal_id for p in open_] == [fresh]


class TestLiveWeights:
    def test_later_approvals_use_weight_after_rotation(
        self, resolver: PolicyResolver, seed: str, a: str, b: str, c: str,
    ) -> None:
        assets = AssetRegistry(a)
        eng = GovernanceEngine(resolver, assets, ASSET_ACTIONS)
        eng.initialize(seed, now=_now())
        eng.propose_rotation(seed, [a, b, c], [1, 2, 2], 3, now=_now())

        token = _addr()
        pending = eng.propose_action(a, SetAsset("usdc", token), now=_now())

        rotation = eng.propose_rotation(b, [a, b, c], [1, 5, 1], 6, now=_now())
        eng.approve(c, rotation, now=_now())
        assert eng.weight_of(b) == (True, 5)

        p = eng.approve(b, pending, now=_now())
        assert p.approved_weight == 6
        assert p.completed
        assert assets.resolve("usdc") == token

    def test_dropped_signer_cannot_approve_old_proposal(
        self, council: GovernanceEngine, a: str, b: str, c: str,
    ) -> None:
        pending = council.propose_action(a, AddRegion("eu"), now=_now())
        rotation = council.propose_rotation(b, [a, b], [1, 2], 2, now=_now())
        council.approve(c, rotation, now=_now())
        assert council.weight_of(c) == (False, 0)
        with pytest.raises(AuthorizationError):
            council.approve(c, pending, now=_now())


class TestElevatedActions:
    def test_non_admin_signer_cannot_propose(self, council: GovernanceEngine, b: str) -> None:
        with pytest.raises(AuthorizationError, match="administrator"):
            council.propose_action(b, AddRegion("eu"), now=_now())
        assert council.list_proposals(ProposalState.OPEN, now=_now()) == []

    def test_admin_must_also_be_signer(
        self, resolver: PolicyResolver, seed: str, a: str,
    ) -> None:
        eng = GovernanceEngine(resolver, RegionRegistry(a), ROLE_ACTIONS)
        eng.initialize(seed, now=_now())
        with pytest.raises(AuthorizationError, match="not a valid signer"):
            eng.propose_action(a, AddRegion("eu"), now=_now())

    def test_unreachable_administrator_is_downstream(
        self, resolver: PolicyResolver, seed: str,
    ) -> None:
        eng = GovernanceEngine(resolver, UnreachableAdminRegions(seed), ROLE_ACTIONS)
        eng.initialize(seed, now=_now())
        with pytest.raises(DownstreamError):
            eng.propose_action(seed, ToggleState(True), now=_now())

    def test_non_elevated_asset_action_needs_no_admin(
        self, resolver: PolicyResolver, seed: str,
    ) -> None:
        assets = AssetRegistry(_addr())
        eng = GovernanceEngine(resolver, assets, ASSET_ACTIONS)
        eng.initialize(seed, now=_now())
        eng.propose_action(seed, SetAsset("dai", seed), now=_now())
        assert assets.resolve("dai") == seed

    def test_action_outside_set_rejected(self, council: GovernanceEngine, a: str) -> None:
        with pytest.raises(ValidationError, match="not accepted"):
            council.propose_action(a, SetAsset("usdc", _addr()), now=_now())


class TestDispatchRollback:
    def test_failed_dispatch_on_creation_leaves_no_proposal(
        self, resolver: PolicyResolver, seed: str, event_log: EventLog,
    ) -> None:
        eng = GovernanceEngine(resolver, RegionRegistry(seed), ROLE_ACTIONS, event_log=event_log)
        eng.initialize(seed, now=_now())
        with pytest.raises(DownstreamError):
            eng.propose_action(seed, RemoveRegion("missing"), now=_now())
        assert eng.list_proposals() == []
        assert event_log.events(EventKind.PROPOSAL_CREATED) == []

        # The id is reused by the next successful proposal
        assert eng.propose_action(seed, AddRegion("eu"), now=_now()) == 1

    def test_failed_dispatch_on_approval_rolls_back_the_approval(
        self, council: GovernanceEngine, regions: CountingRegions, a: str, b: str,
    ) -> None:
        pid = council.propose_action(a, RemoveRegion("eu"), now=_now())
        with pytest.raises(DownstreamError):
            council.approve(b, pid, now=_now())

        p = council.get_proposal(pid)
        assert not p.completed
        assert p.approved_weight == 1
        assert p.approvers == [a]
        assert not council.has_approved(b, pid)

        regions.create_region("eu")
        assert council.approve(b, pid, now=_now()).completed
        assert not regions.has_region("eu")


class TestCancel:
    def test_creator_cancels(self, council: GovernanceEngine, a: str, b: str) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        p = council.cancel(a, pid, now=_now())
        assert p.cancelled
        assert council.proposal_state(pid, _now()) == ProposalState.CANCELLED
        with pytest.raises(ProposalClosedError):
            council.approve(b, pid, now=_now())

    def test_only_creator_may_cancel(self, council: GovernanceEngine, a: str, b: str) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        with pytest.raises(AuthorizationError):
            council.cancel(b, pid, now=_now())

    def test_cannot_cancel_completed(self, council: GovernanceEngine, a: str, b: str) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        council.approve(b, pid, now=_now())
        with pytest.raises(ProposalClosedError):
            council.cancel(a, pid, now=_now())

    def test_cannot_cancel_expired(self, council: GovernanceEngine, a: str) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        with pytest.raises(ProposalExpiredError):
            council.cancel(a, pid, now=_now() + timedelta(days=8))

    def test_rotated_out_creator_may_still_cancel(
        self, council: GovernanceEngine, a: str, b: str, c: str,
    ) -> None:
        pending = council.propose_action(a, AddRegion("eu"), now=_now())
        rotation = council.propose_rotation(b, [b, c], [2, 2], 2, now=_now())
        council.approve(c, rotation, now=_now())
        assert council.weight_of(a) == (False, 0)
        assert council.cancel(a, pending, now=_now()).cancelled


class TestIntegrity:
    def test_tampered_proposal_cannot_be_approved(
        self, council: GovernanceEngine, regions: CountingRegions, a: str, b: str,
    ) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        council._store._proposals[pid].action = AddRegion("attacker")
        with pytest.raises(IntegrityError):
            council.approve(b, pid, now=_now())
        assert not council.has_approved(b, pid)
        assert not regions.has_region("attacker")
        assert council.check_invariants() != []

    def test_healthy_engine_has_no_violations(
        self, council: GovernanceEngine, a: str, b: str,
    ) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        council.approve(b, pid, now=_now())
        assert council.check_invariants() == []


class TestEvents:
    def test_initialize_and_rotation_events(
        self, council: GovernanceEngine, event_log: EventLog, seed: str,
    ) -> None:
        kinds = [e.event_kind for e in event_log.events()]
        assert kinds == [
            EventKind.ENGINE_INITIALIZED,
            EventKind.PROPOSAL_CREATED,
            EventKind.PROPOSAL_COMPLETED,
            EventKind.SIGNER_SET_ROTATED,
        ]
        rotated = event_log.events(EventKind.SIGNER_SET_ROTATED)[0]
        assert rotated.payload["previous_signers"] == [seed]
        assert rotated.event_id == "EVT-00000004"

    def test_approval_events(
        self, council: GovernanceEngine, event_log: EventLog, a: str, b: str,
    ) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        council.approve(b, pid, now=_now())
        kinds = [e.event_kind for e in event_log.events_for_proposal(pid)]
        assert kinds == [
            EventKind.PROPOSAL_CREATED,
            EventKind.PROPOSAL_APPROVED,
            EventKind.PROPOSAL_COMPLETED,
        ]
        approved = event_log.events(EventKind.PROPOSAL_APPROVED)[0]
        assert approved.actor_id == b
        assert approved.payload["weight"] == 2
        assert approved.payload["digest"] == council.digest_of(pid)

    def test_rejected_operations_emit_nothing(
        self, council: GovernanceEngine, event_log: EventLog, a: str,
    ) -> None:
        before = event_log.count
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        with pytest.raises(AlreadyApprovedError):
            council.approve(a, pid, now=_now())
        assert event_log.count == before + 1

    def test_cancel_event(self, council: GovernanceEngine, event_log: EventLog, a: str) -> None:
        pid = council.propose_action(a, AddRegion("eu"), now=_now())
        council.cancel(a, pid, now=_now())
        assert event_log.last_event.event_kind == EventKind.PROPOSAL_CANCELLED


class TestAuditFailure:
    def _flaky_council(
        self, resolver: PolicyResolver, seed: str, a: str, b: str, c: str,
    ) -> tuple[GovernanceEngine, FlakyLog, RegionRegistry]:
        log = FlakyLog(EventKind.PROPOSAL_APPROVED)
        regions = RegionRegistry(a)
        eng = GovernanceEngine(resolver, regions, ROLE_ACTIONS, event_log=log)
        eng.initialize(seed, now=_now())
        eng.propose_rotation(seed, [a, b, c], [1, 2, 2], 3, now=_now())
        return eng, log, regions

    def test_log_failure_does_not_undo_completion(
        self, resolver: PolicyResolver, seed: str, a: str, b: str, c: str,
    ) -> None:
        eng, log, regions = self._flaky_council(resolver, seed, a, b, c)
        pid = eng.propose_action(a, AddRegion("eu"), now=_now())

        proposal = eng.approve(b, pid, now=_now())
        assert proposal.approved_weight == 3
        assert eng.proposal_state(pid, now=_now()) == ProposalState.COMPLETED
        assert regions.has_region("eu")
        assert eng.unwritten_events == 2
        failure = eng.take_audit_failure()
        assert failure is not None and "disk full" in failure
        assert eng.take_audit_failure() is None
        assert [e.event_kind for e in log.events_for_proposal(pid)] == [
            EventKind.PROPOSAL_CREATED,
        ]

    def test_backlog_written_in_order_on_next_transition(
        self, resolver: PolicyResolver, seed: str, a: str, b: str, c: str,
    ) -> None:
        eng, log, _ = self._flaky_council(resolver, seed, a, b, c)
        pid = eng.propose_action(a, AddRegion("eu"), now=_now())
        eng.approve(b, pid, now=_now())

        nxt = eng.propose_action(a, AddRegion("us"), now=_now())
        assert eng.unwritten_events == 0
        assert eng.status(now=_now())["unwritten_audit_events"] == 0
        tail = [(e.event_kind, e.payload["proposal_id"]) for e in log.events()[-3:]]
        assert tail == [
            (EventKind.PROPOSAL_APPROVED, pid),
            (EventKind.PROPOSAL_COMPLETED, pid),
            (EventKind.PROPOSAL_CREATED, nxt),
        ]
        ids = [e.event_id for e in log.events()]
        assert ids == sorted(ids)

    def test_backlog_survives_restore(
        self, resolver: PolicyResolver, seed: str, a: str, b: str, c: str,
        tmp_path: Path,
    ) -> None:
        path = tmp_path / "events.jsonl"
        log = FlakyLog(EventKind.PROPOSAL_APPROVED, storage_path=path)
        regions = RegionRegistry(a)
        eng = GovernanceEngine(resolver, regions, ROLE_ACTIONS, event_log=log)
        eng.initialize(seed, now=_now())
        eng.propose_rotation(seed, [a, b, c], [1, 2, 2], 3, now=_now())
        pid = eng.propose_action(a, AddRegion("eu"), now=_now())
        eng.approve(b, pid, now=_now())
        records = eng.to_records()
        assert len(records["unwritten_events"]) == 2

        reloaded = EventLog(storage_path=path)
        restored = GovernanceEngine.from_records(
            resolver, regions, ROLE_ACTIONS, records, event_log=reloaded,
        )
        assert restored.unwritten_events == 2
        restored.propose_action(a, AddRegion("us"), now=_now())
        assert restored.unwritten_events == 0
        assert [e.event_kind for e in EventLog(storage_path=path).events_for_proposal(pid)] == [
            EventKind.PROPOSAL_CREATED,
            EventKind.PROPOSAL_APPROVED,
            EventKind.PROPOSAL_COMPLETED,
        ]


class TestStatus:
    def test_status_summary(self, council: GovernanceEngine, a: str) -> None:
        council.propose_action(a, AddRegion("eu"), now=_now())
        status = council.status(now=_now())
        assert status["action_set"] == "roles"
        assert status["threshold"] == 3
        assert status["proposals"]["total"] == 2
        assert status["proposals"]["by_state"] == {"completed": 1, "open": 1}
        assert status["expiration_window_days"] == 7
