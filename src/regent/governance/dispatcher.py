"""Execution dispatcher — turns a completed proposal into one external effect.

| Action kind                            | Effect                                  |
|----------------------------------------|-----------------------------------------|
| rotate_signers                         | SignerRegistry.rotate                   |
| add_region / remove_region             | resource.create_region / delete_region  |
| add_region_admin / remove_region_admin | resource.grant / revoke_region_admin    |
| toggle_state                           | resource.set_global_paused              |
| set_asset / remove_asset               | resource.bind_asset / unbind_asset      |

Pure routing: no retry, no partial effects. Any failure from the managed
resource surfaces as DownstreamError and the engine rolls the triggering
operation back.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from regent.errors import DownstreamError
from regent.governance.signer_registry import SignerRegistry
from regent.models.governance import (
    ActionKind,
    AddRegion,
    AddRegionAdmin,
    GovernanceAction,
    RemoveAsset,
    RemoveRegion,
    RemoveRegionAdmin,
    RotateSigners,
    SetAsset,
    ToggleState,
)
from regent.resource.base import ManagedResource

logger = logging.getLogger(__name__)


class ExecutionDispatcher:
    """Routes each action kind to exactly one call."""

    def __init__(self, registry: SignerRegistry, resource: ManagedResource) -> None:
        self._registry = registry
        self._resource = resource
        self._handlers: dict[ActionKind, Callable[[Any], dict[str, Any]]] = {
            ActionKind.ROTATE_SIGNERS: self._rotate_signers,
            ActionKind.ADD_REGION: self._add_region,
            ActionKind.REMOVE_REGION: self._remove_region,
            ActionKind.ADD_REGION_ADMIN: self._add_region_admin,
            ActionKind.REMOVE_REGION_ADMIN: self._remove_region_admin,
            ActionKind.TOGGLE_STATE: self._toggle_state,
            ActionKind.SET_ASSET: self._set_asset,
            ActionKind.REMOVE_ASSET: self._remove_asset,
        }
        missing = set(ActionKind) - set(self._handlers)
        if missing:
            raise RuntimeError(
                "Dispatch table is missing handlers for: "
                + ", ".join(sorted(k.value for k in missing))
            )

    def dispatch(self, action: GovernanceAction) -> dict[str, Any]:
        """Apply ``action``. Returns a summary of the effect for the audit log.

        Raises DownstreamError if the managed resource rejects the command.
        """
        handler = self._handlers[action.kind]
        if action.kind == ActionKind.ROTATE_SIGNERS:
            return handler(action)
        try:
            effect = handler(action)
        except Exception as e:
            logger.warning("Dispatch of %s failed: %s", action.kind.value, e)
            raise DownstreamError(
                f"Managed resource rejected {action.kind.value}: {e}"
            ) from e
        logger.info("Dispatched %s %s", action.kind.value, action.params())
        return effect

    def _rotate_signers(self, action: RotateSigners) -> dict[str, Any]:
        previous = self._registry.current_signers()
        self._registry.rotate(
            list(action.signers), list(action.weights), action.threshold,
        )
        logger.info(
            "Signer set rotated: %d signers, total weight %d, threshold %d",
            len(action.signers), action.total_weight, action.threshold,
        )
        return {
            "previous_signers": previous,
            "signers": list(action.signers),
            "weights": list(action.weights),
            "threshold": action.threshold,
        }

    def _add_region(self, action: AddRegion) -> dict[str, Any]:
        self._resource.create_region(action.region_id)
        return {"region_id": action.region_id}

    def _remove_region(self, action: RemoveRegion) -> dict[str, Any]:
        self._resource.delete_region(action.region_id)
        return {"region_id": action.region_id}

    def _add_region_admin(self, action: AddRegionAdmin) -> dict[str, Any]:
        self._resource.grant_region_admin(action.region_id, action.admin)
        return {"region_id": action.region_id, "admin": action.admin}

    def _remove_region_admin(self, action: RemoveRegionAdmin) -> dict[str, Any]:
        self._resource.revoke_region_admin(action.region_id, action.admin)
        return {"region_id": action.region_id, "admin": action.admin}

    def _toggle_state(self, action: ToggleState) -> dict[str, Any]:
        self._resource.set_global_paused(action.paused)
        return {"paused": action.paused}

    def _set_asset(self, action: SetAsset) -> dict[str, Any]:
        self._resource.bind_asset(action.asset_id, action.address)
        return {"asset_id": action.asset_id, "address": action.address}

    def _remove_asset(self, action: RemoveAsset) -> dict[str, Any]:
        self._resource.unbind_asset(action.asset_id)
        return {"asset_id": action.asset_id}
