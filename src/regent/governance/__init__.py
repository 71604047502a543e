"""Governance engine — signer registry, proposal store, lifecycle and dispatch."""

from regent.governance.dispatcher import ExecutionDispatcher
from regent.governance.engine import GovernanceEngine
from regent.governance.proposal_store import ProposalStore
from regent.governance.signer_registry import SignerRegistry

__all__ = ["ExecutionDispatcher", "GovernanceEngine", "ProposalStore", "SignerRegistry"]
