"""x402-style payment requirements returned with HTTP 402."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from credit_ledger.common.config import LedgerSettings
from credit_ledger.common.exceptions import ValidationError
from credit_ledger.payments.models import SUPPORTED_TOKENS
from credit_ledger.payments.records import to_amount

DEFAULT_DESCRIPTION = "Purchase credits to continue"


def build_payment_requirements(
    settings: LedgerSettings,
    nonce: str,
    amount: Any = None,
    token: str = "USDC",
    description: str = DEFAULT_DESCRIPTION,
) -> dict[str, Any]:
    """Describe the payment a client must make to top up.

    ``max_amount_required`` is in the token's atomic units, as a string.
    """
    if token not in SUPPORTED_TOKENS:
        raise ValidationError(f"token must be one of {sorted(SUPPORTED_TOKENS)}")
    value = to_amount(settings.topup_amount if amount is None else amount)
    atomic = int(value * (Decimal(10) ** settings.token_decimals))
    credits = int((value * settings.credits_per_unit).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return {
        "scheme": "exact",
        "network": settings.chain_id,
        "amount": format(value.normalize(), "f"),
        "token": token,
        "asset": settings.token_mints.get(token, ""),
        "max_amount_required": str(atomic),
        "pay_to": settings.recipient_wallet,
        "recipient": settings.recipient_wallet,
        "description": description,
        "max_timeout_seconds": settings.payment_timeout_seconds,
        "nonce": nonce,
        "credits": credits,
    }
