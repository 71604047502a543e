"""Managed resources — the systems a governance engine administers.

The engine talks to a resource only through the ManagedResource command
surface. Two in-memory resources ship with matching action sets:
RegionRegistry with ROLE_ACTIONS, AssetRegistry with ASSET_ACTIONS.
"""

from regent.resource.assets import ASSET_ACTIONS, AssetRegistry
from regent.resource.base import ActionSet, InMemoryResource, ManagedResource
from regent.resource.roles import ROLE_ACTIONS, RegionRegistry

__all__ = [
    "ASSET_ACTIONS",
    "ROLE_ACTIONS",
    "ActionSet",
    "AssetRegistry",
    "InMemoryResource",
    "ManagedResource",
    "RegionRegistry",
]
