"""Payment API router: records, intents, client verification and chain webhook."""

import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response

from credit_ledger.common.exceptions import NotFoundError, ValidationError
from credit_ledger.common.security import require_api_key, require_identity
from credit_ledger.deps import LedgerContainer, get_container
from credit_ledger.payments.chain_webhook import (
    SIGNATURE_HEADER,
    parse_chain_webhook,
    verify_webhook_signature,
)
from credit_ledger.payments.coordinator import AtomicVerificationResult
from credit_ledger.payments.models import STATUS_CONFIRMED, STATUS_FAILED, STATUS_PENDING
from credit_ledger.payments.nonces import generate_nonce
from credit_ledger.payments.requirements import build_payment_requirements
from credit_ledger.payments.schemas import (
    PaymentIntentRequest,
    PaymentRecordCreate,
    PaymentRecordResponse,
    PaymentRequirements,
    PaymentStatusUpdate,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    StatusUpdateResponse,
    WebhookAck,
)

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_PAYMENT = "Invalid payment"


def _record_to_response(record) -> PaymentRecordResponse:
    return PaymentRecordResponse(
        id=record.id,
        user_id=record.user_id,
        transaction_id=record.transaction_id,
        expected_amount=record.expected_amount,
        token=record.token,
        recipient=record.recipient,
        nonce=record.nonce,
        status=record.status,
        credits_added=record.credits_added,
        expires_at=record.expires_at,
        verified_at=record.verified_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _raise_for_unsettled(result: AtomicVerificationResult) -> None:
    """Map a failed settlement to an HTTP error (retryable → 500, else 400)."""
    if result.retryable:
        raise HTTPException(
            status_code=500, detail="Payment verification temporarily unavailable",
        )
    raise HTTPException(status_code=400, detail="Payment verification failed")


@router.post("/payment/records", response_model=PaymentRecordResponse, status_code=201)
async def create_payment_record(
    body: PaymentRecordCreate,
    _=Depends(require_api_key),
    ledger: LedgerContainer = Depends(get_container),
):
    settings = ledger.settings
    try:
        async with ledger.db.get_session() as session:
            created = await ledger.records.create_secure_payment_record(
                session,
                user_id=body.user_id,
                transaction_id=body.transaction_id,
                amount=body.expected_amount,
                token=body.token,
                recipient=body.recipient or settings.recipient_wallet,
                nonce=body.nonce or generate_nonce(),
                timeout_seconds=body.timeout_seconds or settings.payment_timeout_seconds,
            )
            if not created.created:
                raise HTTPException(status_code=400, detail="Payment record already exists")
            return _record_to_response(created.record)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.get("/payment/records", response_model=PaymentRecordResponse)
async def get_payment_record(
    transaction_id: str = Query(..., min_length=1),
    _=Depends(require_api_key),
    ledger: LedgerContainer = Depends(get_container),
):
    try:
        async with ledger.db.get_session() as session:
            record = await ledger.records.get_payment_record(session, transaction_id)
            return _record_to_response(record)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.patch("/payment/records", response_model=StatusUpdateResponse)
async def update_payment_record(
    body: PaymentStatusUpdate,
    transaction_id: str = Query(..., min_length=1),
    _=Depends(require_api_key),
    ledger: LedgerContainer = Depends(get_container),
):
    """Settle a pending record by hand.

    Confirming goes through the coordinator so the credits land exactly once.
    """
    try:
        async with ledger.db.get_session() as session:
            record = await ledger.records.get_payment_record(session, transaction_id)
            nonce = record.nonce
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    result = await ledger.coordinator.verify_transaction_atomic(
        transaction_id, nonce, body.status == STATUS_CONFIRMED,
    )
    if result.retryable:
        _raise_for_unsettled(result)

    if result.success:
        status = STATUS_CONFIRMED
    elif result.code in ("VERIFICATION_FAILED", "PAYMENT_FAILED"):
        status = STATUS_FAILED
    else:
        status = STATUS_PENDING
    return StatusUpdateResponse(
        success=status == body.status,
        transaction_id=transaction_id,
        status=status,
    )


@router.post("/payment/intents", response_model=PaymentRequirements)
async def create_payment_intent(
    body: PaymentIntentRequest | None = None,
    user_id: str = Depends(require_identity),
    ledger: LedgerContainer = Depends(get_container),
):
    body = body or PaymentIntentRequest()
    try:
        requirements = build_payment_requirements(
            ledger.settings, generate_nonce(), amount=body.amount, token=body.token,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    logger.info(
        "Payment intent issued",
        extra={"context": {"user_id": user_id, "amount": requirements["amount"]}},
    )
    return requirements


@router.post("/payment/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    body: PaymentVerifyRequest,
    response: Response,
    user_id: str = Depends(require_identity),
    ledger: LedgerContainer = Depends(get_container),
):
    """Register a client-submitted payment and settle it.

    Resubmitting the same transaction with the same nonce is a retry and is
    settled again (idempotently); any other duplicate is refused.
    """
    settings = ledger.settings
    try:
        async with ledger.db.get_session() as session:
            created = await ledger.records.create_secure_payment_record(
                session,
                user_id=user_id,
                transaction_id=body.transaction_id,
                amount=body.amount,
                token=body.token,
                recipient=settings.recipient_wallet,
                nonce=body.nonce,
                timeout_seconds=settings.payment_timeout_seconds,
            )
            if not created.created:
                existing = await ledger.records.get_payment_record_by_transaction_id(
                    session, body.transaction_id,
                )
                if existing is None or existing.user_id != user_id or existing.nonce != body.nonce:
                    raise HTTPException(status_code=400, detail=INVALID_PAYMENT)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    result = await ledger.coordinator.settle_transaction(body.transaction_id, body.nonce)
    if result.pending:
        response.status_code = 202
        return PaymentVerifyResponse(
            success=False, status=STATUS_PENDING, message=result.error,
        )
    if not result.success:
        _raise_for_unsettled(result)

    async with ledger.db.get_session() as session:
        credits = await ledger.credits.get_credits(session, user_id)
    return PaymentVerifyResponse(
        success=True,
        status=STATUS_CONFIRMED,
        credits=credits,
        credits_added=result.credits_added,
        already_processed=result.already_processed,
        message="Payment already processed" if result.already_processed else "Credits added",
    )


@router.post("/webhook/solana", response_model=WebhookAck)
async def solana_webhook(
    request: Request,
    response: Response,
    x_ledger_signature: str | None = Header(None, alias=SIGNATURE_HEADER),
    ledger: LedgerContainer = Depends(get_container),
):
    """Chain notification for a transaction signature. Safe to redeliver."""
    payload = await request.body()
    secret = ledger.settings.webhook_secret
    if secret and not verify_webhook_signature(payload, x_ledger_signature or "", secret):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        data = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    event = parse_chain_webhook(data)
    if event is None:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    if event.result != "finalized":
        response.status_code = 202
        return WebhookAck(success=True, status=STATUS_PENDING)

    result = await ledger.coordinator.settle_transaction(event.signature)
    if result.code == "RECORD_NOT_FOUND":
        raise HTTPException(status_code=404, detail="Payment record not found")
    if result.pending:
        response.status_code = 202
        return WebhookAck(success=True, status=STATUS_PENDING)
    if not result.success:
        _raise_for_unsettled(result)
    return WebhookAck(
        success=True,
        status=STATUS_CONFIRMED,
        already_processed=result.already_processed,
    )
