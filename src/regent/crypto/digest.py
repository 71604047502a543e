"""Proposal integrity digest.

The digest binds a proposal's stored action to the values it had at
creation. It is SHA-256 over the canonical JSON (sorted keys, Unicode
preserved, UTF-8) of:

    {"domain": <engine domain tag>,
     "proposal_id": <int>,
     "kind": <action kind>,
     "params": <action params>}

The domain tag separates engine instances: a digest produced by the role
engine never verifies in the asset engine, even for the same id.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from regent.models.governance import GovernanceAction

DIGEST_PREFIX = "sha256:"


def canonical_bytes(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")


def proposal_digest(
    domain: str,
    proposal_id: int,
    action: GovernanceAction,
) -> str:
    """Compute the integrity digest for a proposal's action."""
    canonical = canonical_bytes({
        "domain": domain,
        "proposal_id": proposal_id,
        "kind": action.kind.value,
        "params": action.params(),
    })
    return f"{DIGEST_PREFIX}{hashlib.sha256(canonical).hexdigest()}"


def digests_match(expected: str, actual: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))
