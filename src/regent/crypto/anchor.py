"""Audit-log anchoring — publish the audit digest on an Ethereum chain.

The audit log already makes each governance transition tamper-evident
record by record. Anchoring its digest in a transaction adds a public,
timestamped witness: anyone holding the log can recompute the digest and
compare it with the transaction's data field.

No contract is involved. The digest is carried in the data field of a
zero-value transaction the signing account sends to itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from eth_account import Account
from web3 import HTTPProvider, Web3

from regent.crypto.digest import DIGEST_PREFIX

logger = logging.getLogger(__name__)

SEPOLIA_CHAIN_ID = 11155111
_EXPLORERS = {
    1: "https://etherscan.io/tx/",
    SEPOLIA_CHAIN_ID: "https://sepolia.etherscan.io/tx/",
}


@dataclass(frozen=True)
class AnchorRecord:
    """A confirmed anchor of one audit-log digest."""
    digest: str
    event_count: int
    tx_hash: str
    block_number: int
    chain_id: int
    timestamp_utc: str
    explorer_url: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "digest": self.digest,
            "event_count": self.event_count,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "chain_id": self.chain_id,
            "timestamp_utc": self.timestamp_utc,
            "explorer_url": self.explorer_url,
        }


def digest_payload(digest: str) -> bytes:
    """Raw 32 bytes carried in the transaction data field."""
    raw = digest.removeprefix(DIGEST_PREFIX)
    payload = bytes.fromhex(raw)
    if len(payload) != 32:
        raise ValueError(f"Expected a 32-byte SHA-256 digest, got {len(payload)} bytes")
    return payload


def build_anchor_transaction(
    w3: Web3,
    sender: str,
    digest: str,
    chain_id: int,
    gas: int = 30_000,
    gas_price_gwei: str = "2",
) -> dict[str, Any]:
    """Build the unsigned self-send transaction carrying ``digest``."""
    return {
        "to": sender,
        "value": 0,
        "gas": gas,
        "gasPrice": w3.to_wei(gas_price_gwei, "gwei"),
        "nonce": w3.eth.get_transaction_count(sender),
        "chainId": chain_id,
        "data": digest_payload(digest),
    }


def anchor_digest(
    digest: str,
    event_count: int,
    rpc_url: str,
    private_key: str,
    chain_id: int = SEPOLIA_CHAIN_ID,
    timeout: int = 300,
    w3: Optional[Web3] = None,
) -> AnchorRecord:
    """Send the anchor transaction and wait for one confirmation."""
    w3 = w3 or Web3(HTTPProvider(rpc_url))
    account = Account.from_key(private_key)

    tx = build_anchor_transaction(w3, account.address, digest, chain_id)
    signed = account.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    logger.info("Anchor transaction sent: %s", tx_hash.hex())

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    explorer_url = _EXPLORERS[chain_id] + tx_hash.hex() if chain_id in _EXPLORERS else ""
    logger.info("Anchor confirmed in block %d", receipt.blockNumber)

    return AnchorRecord(
        digest=digest,
        event_count=event_count,
        tx_hash=tx_hash.hex(),
        block_number=receipt.blockNumber,
        chain_id=chain_id,
        timestamp_utc=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        explorer_url=explorer_url,
    )
