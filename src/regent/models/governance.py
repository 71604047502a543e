"""Proposal and action data models.

A proposal carries exactly one action. Actions form a closed tagged union
keyed by ActionKind; each variant is a frozen dataclass that validates and
normalizes its own parameters on construction, so an invalid action can
never reach the proposal store.

Proposal lifecycle:
    OPEN → COMPLETED   (accumulated weight reached the threshold)
    OPEN → CANCELLED   (creator withdrew it)
    OPEN reads as EXPIRED once its age exceeds the expiration window.
Terminal states have no outgoing transitions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar, Optional, Union

from regent.errors import ValidationError
from regent.models.identity import NULL_IDENTITY, require_identity


class ActionKind(str, enum.Enum):
    """Every action a proposal can carry."""
    ROTATE_SIGNERS = "rotate_signers"
    # Region / role registry
    ADD_REGION = "add_region"
    REMOVE_REGION = "remove_region"
    ADD_REGION_ADMIN = "add_region_admin"
    REMOVE_REGION_ADMIN = "remove_region_admin"
    # Shared
    TOGGLE_STATE = "toggle_state"
    # Asset registry
    SET_ASSET = "set_asset"
    REMOVE_ASSET = "remove_asset"


class ProposalState(str, enum.Enum):
    OPEN = "open"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"  # Derived on read, never stored


def _require_key(value: str, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} must not be empty")
    return value.strip()


def validate_rotation(
    signers: list[str],
    weights: list[int],
    threshold: int,
) -> list[str]:
    """Validate a candidate signer set. Returns the normalized signer list.

    Raises ValidationError on length mismatch, empty set, non-positive
    weight, null or duplicate identity, or a threshold outside
    1..sum(weights).
    """
    if len(signers) != len(weights):
        raise ValidationError(
            f"Signer/weight length mismatch: {len(signers)} signers, "
            f"{len(weights)} weights"
        )
    if not signers:
        raise ValidationError("Signer set must not be empty")

    normalized: list[str] = []
    seen: set[str] = set()
    for signer, weight in zip(signers, weights):
        identity = require_identity(signer, "signer")
        if identity in seen:
            raise ValidationError(f"Duplicate signer: {identity}")
        if isinstance(weight, bool) or not isinstance(weight, int) or weight <= 0:
            raise ValidationError(
                f"Weight for {identity} must be a positive integer, got {weight!r}"
            )
        seen.add(identity)
        normalized.append(identity)

    total = sum(weights)
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ValidationError(f"Threshold must be an integer, got {threshold!r}")
    if threshold <= 0 or threshold > total:
        raise ValidationError(
            f"Threshold {threshold} out of range (1..{total})"
        )
    return normalized


@dataclass(frozen=True)
class RotateSigners:
    """Replace the whole signer set, weights and threshold."""
    kind: ClassVar[ActionKind] = ActionKind.ROTATE_SIGNERS
    signers: tuple[str, ...]
    weights: tuple[int, ...]
    threshold: int

    def __post_init__(self) -> None:
        normalized = validate_rotation(
            list(self.signers), list(self.weights), self.threshold,
        )
        object.__setattr__(self, "signers", tuple(normalized))
        object.__setattr__(self, "weights", tuple(self.weights))

    @property
    def total_weight(self) -> int:
        return sum(self.weights)

    def params(self) -> dict[str, Any]:
        return {
            "signers": list(self.signers),
            "weights": list(self.weights),
            "threshold": self.threshold,
        }


@dataclass(frozen=True)
class AddRegion:
    kind: ClassVar[ActionKind] = ActionKind.ADD_REGION
    region_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "region_id", _require_key(self.region_id, "region_id"))

    def params(self) -> dict[str, Any]:
        return {"region_id": self.region_id}


@dataclass(frozen=True)
class RemoveRegion:
    kind: ClassVar[ActionKind] = ActionKind.REMOVE_REGION
    region_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "region_id", _require_key(self.region_id, "region_id"))

    def params(self) -> dict[str, Any]:
        return {"region_id": self.region_id}


@dataclass(frozen=True)
class AddRegionAdmin:
    kind: ClassVar[ActionKind] = ActionKind.ADD_REGION_ADMIN
    region_id: str
    admin: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "region_id", _require_key(self.region_id, "region_id"))
        object.__setattr__(self, "admin", require_identity(self.admin, "admin"))

    def params(self) -> dict[str, Any]:
        return {"region_id": self.region_id, "admin": self.admin}


@dataclass(frozen=True)
class RemoveRegionAdmin:
    kind: ClassVar[ActionKind] = ActionKind.REMOVE_REGION_ADMIN
    region_id: str
    admin: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "region_id", _require_key(self.region_id, "region_id"))
        object.__setattr__(self, "admin", require_identity(self.admin, "admin"))

    def params(self) -> dict[str, Any]:
        return {"region_id": self.region_id, "admin": self.admin}


@dataclass(frozen=True)
class ToggleState:
    """Set the managed resource's global paused flag."""
    kind: ClassVar[ActionKind] = ActionKind.TOGGLE_STATE
    paused: bool

    def __post_init__(self) -> None:
        if not isinstance(self.paused, bool):
            raise ValidationError(f"paused must be a boolean, got {self.paused!r}")

    def params(self) -> dict[str, Any]:
        return {"paused": self.paused}


@dataclass(frozen=True)
class SetAsset:
    kind: ClassVar[ActionKind] = ActionKind.SET_ASSET
    asset_id: str
    address: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "asset_id", _require_key(self.asset_id, "asset_id"))
        object.__setattr__(self, "address", require_identity(self.address, "address"))

    def params(self) -> dict[str, Any]:
        return {"asset_id": self.asset_id, "address": self.address}


@dataclass(frozen=True)
class RemoveAsset:
    kind: ClassVar[ActionKind] = ActionKind.REMOVE_ASSET
    asset_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "asset_id", _require_key(self.asset_id, "asset_id"))

    def params(self) -> dict[str, Any]:
        return {"asset_id": self.asset_id}


GovernanceAction = Union[
    RotateSigners,
    AddRegion,
    RemoveRegion,
    AddRegionAdmin,
    RemoveRegionAdmin,
    ToggleState,
    SetAsset,
    RemoveAsset,
]

_ACTION_TYPES: dict[ActionKind, type] = {
    ActionKind.ROTATE_SIGNERS: RotateSigners,
    ActionKind.ADD_REGION: AddRegion,
    ActionKind.REMOVE_REGION: RemoveRegion,
    ActionKind.ADD_REGION_ADMIN: AddRegionAdmin,
    ActionKind.REMOVE_REGION_ADMIN: RemoveRegionAdmin,
    ActionKind.TOGGLE_STATE: ToggleState,
    ActionKind.SET_ASSET: SetAsset,
    ActionKind.REMOVE_ASSET: RemoveAsset,
}


def action_from_params(kind: ActionKind | str, params: dict[str, Any]) -> GovernanceAction:
    """Rebuild an action from its kind and params() mapping.

    Raises ValidationError on an unknown kind or missing/extra parameters.
    """
    try:
        action_kind = ActionKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown action kind: {kind!r}") from None
    action_type = _ACTION_TYPES[action_kind]
    if action_kind == ActionKind.ROTATE_SIGNERS:
        params = {
            "signers": tuple(params.get("signers", ())),
            "weights": tuple(params.get("weights", ())),
            "threshold": params.get("threshold"),
        }
    try:
        return action_type(**params)
    except TypeError as e:
        raise ValidationError(f"Bad parameters for {action_kind.value}: {e}") from None


@dataclass
class Proposal:
    """A proposal record.

    proposal_id, action, creator and created_utc are fixed at creation.
    A record with created_utc None is the default view returned for an id
    that was never created; check ``exists`` before reading anything else.
    """
    proposal_id: int = 0
    action: Optional[GovernanceAction] = None
    creator: str = NULL_IDENTITY
    created_utc: Optional[datetime] = None
    approved_weight: int = 0
    approvers: list[str] = field(default_factory=list)
    completed: bool = False
    cancelled: bool = False
    completed_utc: Optional[datetime] = None
    cancelled_utc: Optional[datetime] = None

    @property
    def exists(self) -> bool:
        return self.created_utc is not None

    @property
    def kind(self) -> Optional[ActionKind]:
        return self.action.kind if self.action is not None else None

    @property
    def approver_count(self) -> int:
        return len(self.approvers)

    def is_expired(self, now: datetime, window: timedelta) -> bool:
        """True if the proposal is still open and older than ``window``."""
        if not self.exists or self.completed or self.cancelled:
            return False
        return now - self.created_utc > window

    def state(self, now: datetime, window: timedelta) -> ProposalState:
        if self.completed:
            return ProposalState.COMPLETED
        if self.cancelled:
            return ProposalState.CANCELLED
        if self.is_expired(now, window):
            return ProposalState.EXPIRED
        return ProposalState.OPEN
