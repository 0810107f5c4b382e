"""Explicit construction of the ledger components.

One container is built per application and kept on ``app.state.ledger``;
routers receive it through :func:`get_container`.
"""

from dataclasses import dataclass

from fastapi import Request

from credit_ledger.common.config import LedgerSettings
from credit_ledger.common.database import DatabaseManager
from credit_ledger.credits.service import CreditStore
from credit_ledger.payments.coordinator import AtomicVerificationCoordinator
from credit_ledger.payments.nonces import NonceRegistry
from credit_ledger.payments.records import PaymentRecordStore
from credit_ledger.payments.verifier import TransactionVerifier
from credit_ledger.quota.service import UsageQuotaTracker


@dataclass
class LedgerContainer:
    settings: LedgerSettings
    db: DatabaseManager
    credits: CreditStore
    quota: UsageQuotaTracker
    nonces: NonceRegistry
    records: PaymentRecordStore
    verifier: TransactionVerifier
    coordinator: AtomicVerificationCoordinator


def build_container(
    settings: LedgerSettings,
    db: DatabaseManager | None = None,
    verifier: TransactionVerifier | None = None,
) -> LedgerContainer:
    db = db or DatabaseManager(settings)
    credits = CreditStore(settings)
    nonces = NonceRegistry()
    records = PaymentRecordStore(nonces)
    verifier = verifier or TransactionVerifier(settings)
    return LedgerContainer(
        settings=settings,
        db=db,
        credits=credits,
        quota=UsageQuotaTracker(settings),
        nonces=nonces,
        records=records,
        verifier=verifier,
        coordinator=AtomicVerificationCoordinator(
            settings, db, credits, nonces, records, verifier,
        ),
    )


def get_container(request: Request) -> LedgerContainer:
    return request.app.state.ledger
