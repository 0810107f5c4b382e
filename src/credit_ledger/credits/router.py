"""Credits API router."""

import logging
from datetime import timedelta
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Response

from credit_ledger.common.exceptions import DuplicateError
from credit_ledger.common.security import optional_identity, require_identity
from credit_ledger.credits.schemas import (
    CreditsResponse,
    DailyClaimResponse,
    DailyClaimStatus,
    TopUpRequest,
    TopUpResponse,
)
from credit_ledger.deps import LedgerContainer, get_container

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/credits", response_model=CreditsResponse)
async def get_credits(
    user_id: str | None = Depends(optional_identity),
    ledger: LedgerContainer = Depends(get_container),
):
    if user_id is None:
        return CreditsResponse(credits=0)
    async with ledger.db.get_session() as session:
        credits = await ledger.credits.get_credits(session, user_id)
    return CreditsResponse(credits=credits)


@router.post("/credits", response_model=TopUpResponse)
async def top_up_credits(
    body: TopUpRequest,
    response: Response,
    user_id: str = Depends(require_identity),
    ledger: LedgerContainer = Depends(get_container),
):
    """Credit a verified payment of the caller's.

    The amount is checked against the payment record; credits are only ever
    added by settling that record.
    """
    if not body.amount > 0:
        raise HTTPException(status_code=400, detail="Amount must be greater than zero")

    async with ledger.db.get_session() as session:
        record = await ledger.records.get_payment_record_by_transaction_id(
            session, body.transaction_id,
        )
    if (
        record is None
        or record.user_id != user_id
        or (body.nonce is not None and body.nonce != record.nonce)
        or Decimal(str(body.amount)) != record.expected_amount
    ):
        raise HTTPException(status_code=400, detail="Invalid payment")

    result = await ledger.coordinator.settle_transaction(body.transaction_id, record.nonce)
    if result.pending:
        response.status_code = 202
        async with ledger.db.get_session() as session:
            credits = await ledger.credits.get_credits(session, user_id)
        return TopUpResponse(success=False, credits=credits, message="Payment is still pending")
    if not result.success:
        if result.retryable:
            raise HTTPException(status_code=500, detail="Payment verification temporarily unavailable")
        raise HTTPException(status_code=400, detail="Payment verification failed")

    async with ledger.db.get_session() as session:
        credits = await ledger.credits.get_credits(session, user_id)
    return TopUpResponse(
        success=True,
        credits=credits,
        credits_added=result.credits_added,
        already_processed=result.already_processed,
        message="Payment already processed" if result.already_processed else "Credits added",
    )


@router.post("/credits/claim-daily", response_model=DailyClaimResponse)
async def claim_daily_credits(
    user_id: str = Depends(require_identity),
    ledger: LedgerContainer = Depends(get_container),
):
    """Grant the daily free credits, once per user per service day."""
    today = ledger.quota.today()
    try:
        async with ledger.db.get_session() as session:
            claim = await ledger.credits.claim_daily_credits(session, user_id, today)
    except DuplicateError:
        raise HTTPException(status_code=429, detail="Credits already claimed today")

    logger.info(
        "Daily credits claimed",
        extra={"context": {
            "user_id": user_id,
            "claim_date": today.isoformat(),
            "credits_claimed": claim.credits_claimed,
        }},
    )
    return DailyClaimResponse(
        success=True,
        credits_claimed=claim.credits_claimed,
        credits=claim.credits,
        claim_date=claim.claim_date,
        next_claim_date=claim.claim_date + timedelta(days=1),
        message="Daily credits claimed",
    )


@router.get("/credits/claim-daily", response_model=DailyClaimStatus)
async def daily_claim_status(
    user_id: str = Depends(require_identity),
    ledger: LedgerContainer = Depends(get_container),
):
    today = ledger.quota.today()
    async with ledger.db.get_session() as session:
        claimed = await ledger.credits.has_claimed_daily(session, user_id, today)
        credits = await ledger.credits.get_credits(session, user_id)
    return DailyClaimStatus(
        has_claimed_today=claimed,
        claimable_credits=0 if claimed else ledger.settings.daily_claim_credits,
        credits=credits,
        next_claim_date=today + timedelta(days=1) if claimed else today,
    )
