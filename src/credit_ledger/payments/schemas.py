"""Pydantic schemas for payment endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class PaymentRecordCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)
    expected_amount: Decimal
    token: str = "USDC"
    recipient: str | None = None
    nonce: str | None = None
    timeout_seconds: int | None = Field(None, gt=0)


class PaymentStatusUpdate(BaseModel):
    status: Literal["confirmed", "failed"]


class PaymentRecordResponse(BaseModel):
    id: str
    user_id: str
    transaction_id: str
    expected_amount: Decimal
    token: str
    recipient: str
    nonce: str
    status: str
    credits_added: int
    expires_at: datetime | None = None
    verified_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class StatusUpdateResponse(BaseModel):
    success: bool
    transaction_id: str
    status: str


class PaymentIntentRequest(BaseModel):
    amount: Decimal | None = None
    token: str = "USDC"


class PaymentRequirements(BaseModel):
    scheme: str
    network: str
    amount: str
    token: str
    asset: str
    max_amount_required: str
    pay_to: str
    recipient: str
    description: str
    max_timeout_seconds: int
    nonce: str
    credits: int


class PaymentVerifyRequest(BaseModel):
    transaction_id: str = Field(..., alias="transactionId", min_length=1)
    nonce: str
    amount: Decimal
    token: str = "USDC"

    model_config = {"populate_by_name": True}


class PaymentVerifyResponse(BaseModel):
    success: bool
    status: str
    credits: int | None = None
    credits_added: int = 0
    already_processed: bool = False
    message: str = ""


class WebhookAck(BaseModel):
    success: bool
    status: str = ""
    already_processed: bool = False
