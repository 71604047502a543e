"""Managed resource contract and action sets.

The engine never reads a managed resource's storage. It needs only the
command surface below, plus the identity of the resource's current
administrator for creation-time authorisation of elevated proposals.

An ActionSet binds one engine instance to the action kinds it accepts.
Every action set accepts signer rotation; elevated kinds may only be
proposed by the resource's current administrator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from regent.errors import ResourceError
from regent.models.governance import ActionKind
from regent.models.identity import NULL_IDENTITY, normalize_identity


@runtime_checkable
class ManagedResource(Protocol):
    """Commands the execution dispatcher may send to a managed resource."""

    def create_region(self, region_id: str) -> None: ...

    def delete_region(self, region_id: str) -> None: ...

    def grant_region_admin(self, region_id: str, identity: str) -> None: ...

    def revoke_region_admin(self, region_id: str, identity: str) -> None: ...

    def set_global_paused(self, paused: bool) -> None: ...

    def bind_asset(self, asset_id: str, address: str) -> None: ...

    def unbind_asset(self, asset_id: str) -> None: ...

    def current_administrator(self) -> str: ...


@dataclass(frozen=True)
class ActionSet:
    """Which action kinds an engine instance accepts.

    Invariants:
    - ROTATE_SIGNERS is always accepted.
    - elevated is a subset of kinds.
    """
    name: str
    kinds: frozenset[ActionKind]
    elevated: frozenset[ActionKind]

    def __post_init__(self) -> None:
        if ActionKind.ROTATE_SIGNERS not in self.kinds:
            raise ValueError(f"Action set {self.name} must accept signer rotation")
        if not self.elevated <= self.kinds:
            extra = ", ".join(sorted(k.value for k in self.elevated - self.kinds))
            raise ValueError(f"Action set {self.name} elevates unknown kinds: {extra}")

    def allows(self, kind: ActionKind) -> bool:
        return kind in self.kinds

    def requires_admin(self, kind: ActionKind) -> bool:
        return kind in self.elevated


class InMemoryResource:
    """Shared state for the in-memory registries: administrator and pause flag.

    Commands a registry does not support raise ResourceError, the same way a
    remote resource would reject an unknown call.
    """

    resource_name = "resource"

    def __init__(self, administrator: str = NULL_IDENTITY) -> None:
        self._administrator = normalize_identity(administrator, "administrator")
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    def current_administrator(self) -> str:
        return self._administrator

    def set_administrator(self, identity: str) -> None:
        """Hand over administration. Not reachable through proposals."""
        self._administrator = normalize_identity(identity, "administrator")

    def set_global_paused(self, paused: bool) -> None:
        self._paused = paused

    def _unsupported(self, command: str) -> ResourceError:
        return ResourceError(f"{self.resource_name} does not support {command}")

    def create_region(self, region_id: str) -> None:
        raise self._unsupported("create_region")

    def delete_region(self, region_id: str) -> None:
        raise self._unsupported("delete_region")

    def grant_region_admin(self, region_id: str, identity: str) -> None:
        raise self._unsupported("grant_region_admin")

    def revoke_region_admin(self, region_id: str, identity: str) -> None:
        raise self._unsupported("revoke_region_admin")

    def bind_asset(self, asset_id: str, address: str) -> None:
        raise self._unsupported("bind_asset")

    def unbind_asset(self, asset_id: str) -> None:
        raise self._unsupported("unbind_asset")

    def to_records(self) -> dict[str, Any]:
        return {"administrator": self._administrator, "paused": self._paused}

    def _load_common(self, data: dict[str, Any]) -> None:
        self._administrator = normalize_identity(
            data.get("administrator", NULL_IDENTITY), "administrator",
        )
        self._paused = data.get("paused", False)
