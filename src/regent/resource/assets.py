"""Asset registry — the managed resource for the asset engine.

Maps asset identifiers to resolved contract addresses. Binding an asset
that is already bound replaces its address.
"""

from __future__ import annotations

from typing import Any, Optional

from regent.errors import ResourceError
from regent.models.governance import ActionKind
from regent.models.identity import NULL_IDENTITY
from regent.resource.base import ActionSet, InMemoryResource

ASSET_ACTIONS = ActionSet(
    name="assets",
    kinds=frozenset({
        ActionKind.ROTATE_SIGNERS,
        ActionKind.SET_ASSET,
        ActionKind.REMOVE_ASSET,
        ActionKind.TOGGLE_STATE,
    }),
    elevated=frozenset({ActionKind.TOGGLE_STATE}),
)


class AssetRegistry(InMemoryResource):
    """In-memory asset-id → address mapping."""

    resource_name = "asset registry"

    def __init__(self, administrator: str) -> None:
        super().__init__(administrator)
        self._assets: dict[str, str] = {}

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> AssetRegistry:
        registry = cls(data.get("administrator", NULL_IDENTITY))
        registry._load_common(data)
        registry._assets = dict(data.get("assets", {}))
        return registry

    def bind_asset(self, asset_id: str, address: str) -> None:
        self._assets[asset_id] = address

    def unbind_asset(self, asset_id: str) -> None:
        if asset_id not in self._assets:
            raise ResourceError(f"Asset not bound: {asset_id}")
        del self._assets[asset_id]

    def resolve(self, asset_id: str) -> Optional[str]:
        return self._assets.get(asset_id)

    def assets(self) -> dict[str, str]:
        return dict(self._assets)

    def to_records(self) -> dict[str, Any]:
        records = super().to_records()
        records["assets"] = dict(sorted(self._assets.items()))
        return records
