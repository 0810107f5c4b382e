"""Shared test fixtures for Credit-Ledger."""

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from credit_ledger.common.config import LedgerSettings
from credit_ledger.common.security import issue_identity_token
from credit_ledger.payments.verifier import VerificationResult

SECRET_KEY = "test-secret-key-for-unit-tests"
API_KEY = "test-admin-api-key"
RECIPIENT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


class FakeVerifier:
    """Stands in for the chain; returns a canned result and records calls."""

    def __init__(self, result: VerificationResult | None = None):
        self.result = result or VerificationResult(success=True, actual_amount=Decimal("0.5"))
        self.calls: list[tuple] = []
        self.closed = False

    def succeed(self, amount: str = "0.5") -> None:
        self.result = VerificationResult(success=True, actual_amount=Decimal(amount))

    def fail(self, code: str, retryable: bool = False) -> None:
        self.result = VerificationResult(
            success=False, code=code, error=f"{code} from chain", retryable=retryable,
        )

    async def verify_payment(
        self, transaction_id, expected_user_id, expected_amount, expected_token, expected_recipient,
    ) -> VerificationResult:
        self.calls.append(
            (transaction_id, expected_user_id, expected_amount, expected_token, expected_recipient)
        )
        return self.result

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def settings():
    return LedgerSettings(
        db_url="sqlite+aiosqlite://",
        secret_key=SECRET_KEY,
        api_key=API_KEY,
        recipient_wallet=RECIPIENT,
        log_level="WARNING",
    )


@pytest.fixture
def fake_verifier():
    return FakeVerifier()


@pytest.fixture
def app(settings, fake_verifier):
    """Create a test app with in-memory DB and a fake chain."""
    from credit_ledger.app import create_app
    return create_app(settings, verifier=fake_verifier)


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    db = app.state.ledger.db
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-Ledger-Api-Key": API_KEY}


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user id."""
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_identity_token(user_id, SECRET_KEY)}"}
    return _headers
