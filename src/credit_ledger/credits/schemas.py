"""Pydantic schemas for credit endpoints."""

from datetime import date

from pydantic import BaseModel, Field


class CreditsResponse(BaseModel):
    credits: int


class TopUpRequest(BaseModel):
    amount: float
    transaction_id: str = Field(..., alias="transactionId", min_length=1)
    nonce: str | None = None

    model_config = {"populate_by_name": True}


class TopUpResponse(BaseModel):
    success: bool
    credits: int
    credits_added: int = 0
    already_processed: bool = False
    message: str = ""


class DailyClaimResponse(BaseModel):
    success: bool
    credits_claimed: int
    credits: int
    claim_date: date
    next_claim_date: date
    message: str = ""


class DailyClaimStatus(BaseModel):
    has_claimed_today: bool
    claimable_credits: int
    credits: int
    next_claim_date: date
