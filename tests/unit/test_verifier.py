"""Tests for on-chain verification against a mocked Solana JSON-RPC endpoint."""

import json
from decimal import Decimal

import httpx
import pytest

from credit_ledger.common.config import LedgerSettings
from credit_ledger.common.exceptions import RpcError
from credit_ledger.common.retry import RetryPolicy
from credit_ledger.payments.verifier import SolanaRpcClient, TransactionVerifier

RECIPIENT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
PAYER = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
SIG = "5h6xBEauJ3PK6SWCZ1PGjBvj8vDdWG3KpwATGy1ARAXFSDwt8GFXM7W5Ncn16wmqokgpiKRLuS83KUxyZyv2sUYv"


def make_settings(**overrides) -> LedgerSettings:
    defaults = {"recipient_wallet": RECIPIENT}
    defaults.update(overrides)
    return LedgerSettings(**defaults)


USDC = make_settings().token_mints["USDC"]
USDT = make_settings().token_mints["USDT"]


def balance(index: int, owner: str, amount: int, mint: str = USDC) -> dict:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(amount), "decimals": 6},
    }


def transfer(amount: int, owner: str = RECIPIENT, mint: str = USDC, err=None) -> dict:
    """A finalized transaction moving ``amount`` raw units from PAYER to ``owner``."""
    return {
        "slot": 250_000_000,
        "meta": {
            "err": err,
            "preTokenBalances": [balance(1, PAYER, 10_000_000, mint), balance(2, owner, 1_000_000, mint)],
            "postTokenBalances": [
                balance(1, PAYER, 10_000_000 - amount, mint),
                balance(2, owner, 1_000_000 + amount, mint),
            ],
        },
    }


class ChainStub:
    """JSON-RPC handler with a canned signature status and transaction."""

    def __init__(self, status=None, transaction=None, fail_times: int = 0):
        self.status = status if status is not None else {"confirmationStatus": "finalized", "err": None}
        self.transaction = transaction
        self.fail_times = fail_times
        self.methods: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.methods.append(body["method"])
        if self.fail_times:
            self.fail_times -= 1
            return httpx.Response(503)
        if body["method"] == "getSignatureStatuses":
            result = {"context": {"slot": 1}, "value": [self.status or None]}
        else:
            result = self.transaction
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def make_verifier(handler, **overrides) -> TransactionVerifier:
    rpc = SolanaRpcClient(
        "https://rpc.test",
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0, retry_on=(RpcError,), jitter=0),
        transport=httpx.MockTransport(handler),
    )
    return TransactionVerifier(make_settings(**overrides), rpc=rpc)


async def _verify(verifier, amount="0.5", token="USDC", recipient=RECIPIENT):
    try:
        return await verifier.verify_payment(SIG, "user-1", amount, token, recipient)
    finally:
        await verifier.close()


class TestVerifyPayment:
    async def test_exact_amount(self):
        stub = ChainStub(transaction=transfer(500_000))
        result = await _verify(make_verifier(stub))
        assert result.success is True
        assert result.actual_amount == Decimal("0.5")
        assert stub.methods == ["getSignatureStatuses", "getTransaction"]

    async def test_overpayment_accepted(self):
        result = await _verify(make_verifier(ChainStub(transaction=transfer(2_000_000))))
        assert result.success is True
        assert result.actual_amount == Decimal("2")

    async def test_underpayment(self):
        result = await _verify(make_verifier(ChainStub(transaction=transfer(499_999))))
        assert result.success is False
        assert result.code == "AMOUNT_MISMATCH"
        assert result.retryable is False

    async def test_wrong_recipient(self):
        stub = ChainStub(transaction=transfer(500_000, owner=PAYER[::-1]))
        result = await _verify(make_verifier(stub))
        assert result.code == "RECIPIENT_MISMATCH"

    async def test_wrong_token(self):
        result = await _verify(make_verifier(ChainStub(transaction=transfer(500_000, mint=USDT))))
        assert result.code == "TOKEN_MISMATCH"

    async def test_unsupported_token(self):
        result = await _verify(make_verifier(ChainStub()), token="DOGE")
        assert result.code == "TOKEN_MISMATCH"

    async def test_not_found(self):
        stub = ChainStub(status={})
        result = await _verify(make_verifier(stub))
        assert result.code == "NOT_FOUND_ON_CHAIN"
        assert result.retryable is True
        assert stub.methods == ["getSignatureStatuses"]

    async def test_not_finalized(self):
        stub = ChainStub(status={"confirmationStatus": "confirmed", "err": None})
        result = await _verify(make_verifier(stub))
        assert result.code == "NOT_FINALIZED"
        assert result.retryable is True

    async def test_failed_on_chain(self):
        stub = ChainStub(status={"confirmationStatus": "finalized", "err": {"InstructionError": [0, 1]}})
        result = await _verify(make_verifier(stub))
        assert result.code == "TRANSACTION_FAILED"
        assert result.retryable is False

    async def test_transaction_missing_after_status(self):
        result = await _verify(make_verifier(ChainStub(transaction=None)))
        assert result.code == "NOT_FOUND_ON_CHAIN"


class TestRpcResilience:
    async def test_transient_errors_are_retried(self):
        stub = ChainStub(transaction=transfer(500_000), fail_times=2)
        result = await _verify(make_verifier(stub))
        assert result.success is True
        assert stub.methods.count("getSignatureStatuses") == 3

    async def test_exhausted_retries_report_rpc_error(self):
        stub = ChainStub(fail_times=10)
        result = await _verify(make_verifier(stub))
        assert result.success is False
        assert result.code == "RPC_ERROR"
        assert result.retryable is True
        assert len(stub.methods) == 3

    async def test_timeout_reports_rpc_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await _verify(make_verifier(handler))
        assert result.code == "RPC_ERROR"

    async def test_jsonrpc_error_reports_rpc_error(self):
        def handler(request):
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": 1,
                "error": {"code": -32005, "message": "Node is behind"},
            })

        result = await _verify(make_verifier(handler))
        assert result.code == "RPC_ERROR"
        assert "Node is behind" in result.error


class TestMalformedResponses:
    async def test_non_numeric_token_amount(self):
        tx = transfer(500_000)
        tx["meta"]["postTokenBalances"][1]["uiTokenAmount"]["amount"] = "n/a"
        result = await _verify(make_verifier(ChainStub(transaction=tx)))
        assert result.success is False
        assert result.code == "RPC_ERROR"
        assert result.retryable is True

    async def test_list_body(self):
        def handler(request):
            return httpx.Response(200, json=[{"jsonrpc": "2.0", "id": 1, "result": None}])

        result = await _verify(make_verifier(handler))
        assert result.success is False
        assert result.code == "RPC_ERROR"
        assert result.retryable is True

    async def test_status_entry_not_an_object(self):
        result = await _verify(make_verifier(ChainStub(status="bogus")))
        assert result.success is False
        assert result.code == "RPC_ERROR"

    async def test_status_value_not_a_list(self):
        def handler(request):
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": body["id"], "result": {"value": "finalized"},
            })

        result = await _verify(make_verifier(handler))
        assert result.code == "RPC_ERROR"

    async def test_transaction_not_an_object(self):
        result = await _verify(make_verifier(ChainStub(transaction=["bogus"])))
        assert result.code == "RPC_ERROR"

    async def test_token_balances_not_a_list(self):
        tx = transfer(500_000)
        tx["meta"]["postTokenBalances"] = {"accountIndex": 2}
        result = await _verify(make_verifier(ChainStub(transaction=tx)))
        assert result.code == "RPC_ERROR"
        assert result.retryable is True


class TestRpcUrl:
    def test_network_endpoint(self):
        assert make_settings(solana_network="mainnet-beta").rpc_url == "https://api.mainnet-beta.solana.com"

    def test_override(self):
        assert make_settings(solana_rpc_url="https://rpc.example").rpc_url == "https://rpc.example"

    def test_verifier_uses_settings(self):
        verifier = TransactionVerifier(make_settings(rpc_timeout=2.5))
        assert verifier.rpc.url == "https://api.devnet.solana.com"
        assert verifier.rpc.timeout == 2.5
