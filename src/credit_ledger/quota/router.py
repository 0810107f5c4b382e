"""Usage gate router: free quota first, then credits, else 402."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from credit_ledger.common.exceptions import ValidationError
from credit_ledger.common.security import require_identity
from credit_ledger.deps import LedgerContainer, get_container
from credit_ledger.payments.nonces import generate_nonce
from credit_ledger.payments.requirements import build_payment_requirements
from credit_ledger.quota.schemas import UsageCheckResponse, UsageConsumeResponse, UsageRequest
from credit_ledger.quota.service import UsageCheck

logger = logging.getLogger(__name__)

router = APIRouter()


def _free_source(usage: UsageCheck) -> str:
    return "daily_quota" if usage.free_interview_used else "free_interview"


def _payment_required(ledger: LedgerContainer, user_id: str, action: str) -> HTTPException:
    logger.info(
        "Payment required",
        extra={"context": {"user_id": user_id, "action": action}},
    )
    return HTTPException(
        status_code=402,
        detail={
            "error": "Payment required",
            "payment_requirements": build_payment_requirements(
                ledger.settings, generate_nonce(),
            ),
        },
    )


@router.post("/usage/check", response_model=UsageCheckResponse)
async def check_usage(
    body: UsageRequest,
    user_id: str = Depends(require_identity),
    ledger: LedgerContainer = Depends(get_container),
):
    try:
        async with ledger.db.get_session() as session:
            usage = await ledger.quota.check_usage(session, user_id, body.action, body.cost)
            credits = await ledger.credits.get_credits(session, user_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    if usage.allowed:
        source = _free_source(usage)
    elif credits >= usage.cost:
        source = "credits"
    else:
        raise _payment_required(ledger, user_id, body.action)

    return UsageCheckResponse(
        allowed=True,
        cost=usage.cost,
        remaining=usage.remaining,
        free_interview_used=usage.free_interview_used,
        credits=credits,
        source=source,
    )


@router.post("/usage/consume", response_model=UsageConsumeResponse)
async def consume_usage(
    body: UsageRequest,
    user_id: str = Depends(require_identity),
    ledger: LedgerContainer = Depends(get_container),
):
    """Spend free quota if any is left, otherwise charge credits."""
    try:
        async with ledger.db.get_session() as session:
            usage = await ledger.quota.check_usage(session, user_id, body.action, body.cost)
            record = None
            if usage.allowed:
                record = await ledger.quota.record_usage(
                    session, user_id, body.action, usage.cost,
                    free_interview_already_used=usage.free_interview_used,
                )
            if record is not None:
                credits = await ledger.credits.get_credits(session, user_id)
                return UsageConsumeResponse(
                    success=True,
                    source=_free_source(usage),
                    cost=usage.cost,
                    credits=credits,
                    remaining=max(0, ledger.settings.free_daily_limit - record.daily_count),
                    free_interview_used=record.free_interview_used,
                )

            charge = await ledger.credits.charge(session, user_id, usage.cost)
            if charge.insufficient:
                raise _payment_required(ledger, user_id, body.action)
            current = await ledger.quota.get_usage(session, user_id)
            return UsageConsumeResponse(
                success=True,
                source="credits",
                cost=charge.cost,
                credits=charge.credits,
                remaining=max(0, ledger.settings.free_daily_limit - current.daily_count),
                free_interview_used=current.free_interview_used,
            )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
