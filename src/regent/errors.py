"""Error taxonomy for the governance engine.

Every engine failure is a GovernanceError carrying a short ``code`` so the
service layer and CLI can report the category without inspecting types.
GovernanceError derives from ValueError: code that catches ValueError
around engine calls keeps working.
"""

from __future__ import annotations


class GovernanceError(ValueError):
    """Base class for all engine failures."""

    code = "governance"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuthorizationError(GovernanceError):
    """Caller is not a valid signer, not the creator, or not the resource administrator."""

    code = "authorization"


class StateError(GovernanceError):
    """Operation is not allowed in the engine's or proposal's current state."""

    code = "state"


class NotInitializedError(StateError):
    """The signer registry has not been seeded yet."""


class AlreadyInitializedError(StateError):
    """initialize() was called a second time."""


class ProposalNotFoundError(StateError):
    def __init__(self, proposal_id: int) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Proposal not found: {proposal_id}")


class ProposalClosedError(StateError):
    """Proposal is already completed or cancelled."""


class ProposalExpiredError(StateError):
    def __init__(self, proposal_id: int) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Proposal {proposal_id} has expired")


class AlreadyApprovedError(StateError):
    def __init__(self, signer: str, proposal_id: int) -> None:
        self.signer = signer
        self.proposal_id = proposal_id
        super().__init__(
            f"Signer {signer} has already approved proposal {proposal_id}"
        )


class ValidationError(GovernanceError):
    """Malformed rotation or action parameters."""

    code = "validation"


class IntegrityError(GovernanceError):
    """Stored proposal parameters no longer match the creation-time digest."""

    code = "integrity"


class DownstreamError(GovernanceError):
    """The managed resource rejected the dispatched command."""

    code = "downstream"


class ResourceError(Exception):
    """Raised by a managed resource when it cannot apply a command."""
