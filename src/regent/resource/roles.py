"""Region / role registry — the managed resource for the role engine.

Regions are keyed by id. Each region carries a set of admin identities.
The registry also carries the global paused flag and the administrator
identity that gates elevated proposals.
"""

from __future__ import annotations

from typing import Any

from regent.errors import ResourceError
from regent.models.governance import ActionKind
from regent.models.identity import NULL_IDENTITY
from regent.resource.base import ActionSet, InMemoryResource

ROLE_ACTIONS = ActionSet(
    name="roles",
    kinds=frozenset({
        ActionKind.ROTATE_SIGNERS,
        ActionKind.ADD_REGION,
        ActionKind.REMOVE_REGION,
        ActionKind.ADD_REGION_ADMIN,
        ActionKind.REMOVE_REGION_ADMIN,
        ActionKind.TOGGLE_STATE,
    }),
    elevated=frozenset({
        ActionKind.ADD_REGION,
        ActionKind.REMOVE_REGION,
        ActionKind.ADD_REGION_ADMIN,
        ActionKind.REMOVE_REGION_ADMIN,
        ActionKind.TOGGLE_STATE,
    }),
)


class RegionRegistry(InMemoryResource):
    """In-memory region registry with region-scoped admin roles."""

    resource_name = "region registry"

    def __init__(self, administrator: str) -> None:
        super().__init__(administrator)
        self._regions: dict[str, set[str]] = {}

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> RegionRegistry:
        registry = cls(data.get("administrator", NULL_IDENTITY))
        registry._load_common(data)
        for region_id, admins in data.get("regions", {}).items():
            registry._regions[region_id] = set(admins)
        return registry

    def create_region(self, region_id: str) -> None:
        if region_id in self._regions:
            raise ResourceError(f"Region already exists: {region_id}")
        self._regions[region_id] = set()

    def delete_region(self, region_id: str) -> None:
        if region_id not in self._regions:
            raise ResourceError(f"Region not found: {region_id}")
        del self._regions[region_id]

    def grant_region_admin(self, region_id: str, identity: str) -> None:
        admins = self._regions.get(region_id)
        if admins is None:
            raise ResourceError(f"Region not found: {region_id}")
        if identity in admins:
            raise ResourceError(f"{identity} is already an admin of {region_id}")
        admins.add(identity)

    def revoke_region_admin(self, region_id: str, identity: str) -> None:
        admins = self._regions.get(region_id)
        if admins is None:
            raise ResourceError(f"Region not found: {region_id}")
        if identity not in admins:
            raise ResourceError(f"{identity} is not an admin of {region_id}")
        admins.remove(identity)

    def has_region(self, region_id: str) -> bool:
        return region_id in self._regions

    def region_admins(self, region_id: str) -> set[str]:
        return set(self._regions.get(region_id, set()))

    def regions(self) -> list[str]:
        return sorted(self._regions)

    def to_records(self) -> dict[str, Any]:
        records = super().to_records()
        records["regions"] = {
            region_id: sorted(admins)
            for region_id, admins in sorted(self._regions.items())
        }
        return records
