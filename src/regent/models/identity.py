"""Signer and target identities.

Identities are EVM-style 20-byte hex addresses. They are compared in their
EIP-55 checksum form so that the same address typed in lower case and in
checksum case is one identity. The zero address is the null identity and
is never a valid signer, admin or asset target.
"""

from __future__ import annotations

from web3 import Web3

from regent.errors import ValidationError

NULL_IDENTITY = "0x0000000000000000000000000000000000000000"


def normalize_identity(value: str, label: str = "identity") -> str:
    """Return the checksum form of ``value``.

    Raises ValidationError if the value is not a 20-byte hex address.
    The null identity is returned as-is; use require_identity() to reject it.
    """
    if not isinstance(value, str) or not Web3.is_address(value.strip()):
        raise ValidationError(f"Invalid {label}: {value!r}")
    return Web3.to_checksum_address(value.strip())


def require_identity(value: str, label: str = "identity") -> str:
    """Normalize ``value`` and reject the null identity."""
    identity = normalize_identity(value, label)
    if identity == NULL_IDENTITY:
        raise ValidationError(f"{label} must not be the null identity")
    return identity
