"""Cryptographic primitives — proposal digests and audit-log anchoring."""

from regent.crypto.digest import proposal_digest, digests_match

__all__ = ["proposal_digest", "digests_match"]
