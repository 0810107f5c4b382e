"""Credit-Ledger: user credits, usage quota and verified on-chain top-ups."""

from credit_ledger.client import LedgerClient
from credit_ledger.common.retry import RetryPolicy, retry_with_backoff
from credit_ledger.payments.nonces import generate_nonce, is_valid_nonce

__version__ = "0.1.0"

__all__ = [
    "LedgerClient",
    "RetryPolicy",
    "retry_with_backoff",
    "generate_nonce",
    "is_valid_nonce",
]
