"""Inbound chain webhook: signature check and payload parsing."""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Ledger-Signature"
COMMITMENT_LEVELS: frozenset[str] = frozenset({"processed", "confirmed", "finalized"})


@dataclass
class ChainWebhookEvent:
    signature: str
    result: str
    slot: Optional[int] = None
    block_time: Optional[int] = None


def sign_payload(payload: bytes, secret: str) -> str:
    """Compute HMAC-SHA256 hex digest for a raw request body."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature_header: str, secret: str) -> bool:
    """Check ``X-Ledger-Signature`` (``sha256=<hex>`` or bare hex)."""
    if not signature_header or not secret:
        return False
    _, _, given = signature_header.strip().rpartition("sha256=")
    return hmac.compare_digest(sign_payload(payload, secret), given.strip())


def parse_chain_webhook(data: Any) -> Optional[ChainWebhookEvent]:
    """Extract the transaction signature and commitment from a webhook body.

    Returns None for payloads that do not describe a transaction.
    """
    if not isinstance(data, dict):
        return None
    transaction = data.get("transaction")
    if not isinstance(transaction, dict):
        logger.debug("Ignoring chain webhook without transaction")
        return None
    signature = transaction.get("signature")
    if not signature or not isinstance(signature, str):
        logger.warning("Chain webhook transaction has no signature")
        return None

    result = data.get("result", "")
    if result not in COMMITMENT_LEVELS:
        logger.warning("Chain webhook has unknown result %r", result)
        return None

    return ChainWebhookEvent(
        signature=signature,
        result=result,
        slot=transaction.get("slot"),
        block_time=transaction.get("blockTime"),
    )
