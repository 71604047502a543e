"""Core data models for Regent."""

from regent.models.governance import (
    ActionKind,
    AddRegion,
    AddRegionAdmin,
    GovernanceAction,
    Proposal,
    ProposalState,
    RemoveAsset,
    RemoveRegion,
    RemoveRegionAdmin,
    RotateSigners,
    SetAsset,
    ToggleState,
    action_from_params,
    validate_rotation,
)
from regent.models.identity import (
    NULL_IDENTITY,
    normalize_identity,
    require_identity,
)

__all__ = [
    "ActionKind",
    "AddRegion",
    "AddRegionAdmin",
    "GovernanceAction",
    "Proposal",
    "ProposalState",
    "RemoveAsset",
    "RemoveRegion",
    "RemoveRegionAdmin",
    "RotateSigners",
    "SetAsset",
    "ToggleState",
    "action_from_params",
    "validate_rotation",
    "NULL_IDENTITY",
    "normalize_identity",
    "require_identity",
]
