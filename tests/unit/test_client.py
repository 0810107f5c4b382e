"""Tests for client.py: LedgerClient SDK with resilience."""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from credit_ledger.client import LedgerClient


def make_client(handler, **kwargs) -> LedgerClient:
    kwargs.setdefault("sleep", MagicMock())
    return LedgerClient(
        server_url="http://ledger.test/",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestLedgerClientInit:
    def test_defaults(self):
        client = LedgerClient()
        assert client.server_url == "http://localhost:8080"
        assert client.identity_token is None
        assert client.max_retries == 3
        client.close()

    def test_strips_trailing_slash(self):
        with make_client(lambda r: httpx.Response(200, json={})) as client:
            assert client.server_url == "http://ledger.test"


class TestRequests:
    def test_get_credits_sends_bearer(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"credits": 12})

        with make_client(handler, identity_token="tok") as client:
            assert client.get_credits() == 12
        assert seen["auth"] == "Bearer tok"

    def test_get_payment_record_sends_api_key(self):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("x-ledger-api-key")
            seen["tx"] = request.url.params["transaction_id"]
            return httpx.Response(200, json={"transaction_id": "tx-1", "status": "pending"})

        with make_client(handler, api_key="admin") as client:
            data = client.get_payment_record("tx-1")
        assert data["status"] == "pending"
        assert seen == {"key": "admin", "tx": "tx-1"}

    def test_verify_payment_body(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(202, json={"success": False, "status": "pending"})

        with make_client(handler, identity_token="tok") as client:
            data = client.verify_payment("tx-1", "a" * 32, 0.5)
        assert data["status"] == "pending"
        assert seen == {"transactionId": "tx-1", "nonce": "a" * 32, "amount": "0.5", "token": "USDC"}

    def test_payment_required(self):
        requirements = {"amount": "0.5", "token": "USDC", "nonce": "b" * 32}

        def handler(request):
            return httpx.Response(402, json={"detail": {
                "error": "Payment required", "payment_requirements": requirements,
            }})

        with make_client(handler, identity_token="tok") as client:
            data = client.consume_usage("interview")
        assert data["code"] == "PAYMENT_REQUIRED"
        assert data["payment_requirements"] == requirements


class TestRetries:
    def test_retries_server_errors(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"status": "ok", "version": "0.1.0"})

        sleep = MagicMock()
        with make_client(handler, sleep=sleep, retry_backoff_base=0.5) as client:
            assert client.health()["status"] == "ok"
        assert len(calls) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_exhausted_server_errors(self):
        with make_client(lambda r: httpx.Response(500)) as client:
            data = client.health()
        assert data["code"] == "SERVER_ERROR"

    def test_retries_rate_limit(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(429) if len(calls) == 1 else httpx.Response(200, json={"credits": 1})

        with make_client(handler) as client:
            assert client.get_credits() == 1

    def test_timeout_exhaustion(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        with make_client(handler, max_retries=2) as client:
            data = client.health()
        assert data["code"] == "CONNECTION_ERROR"
        assert "2 retries" in data["error"]

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_no_retry_on_client_errors(self, status):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(status, json={"detail": "nope"})

        with make_client(handler) as client:
            data = client.get_payment_record("tx-1")
        assert len(calls) == 1
        assert data["code"] == "CLIENT_ERROR"
        assert data["status_code"] == status
        assert data["error"] == "nope"

    def test_invalid_json(self):
        with make_client(lambda r: httpx.Response(200, content=b"<html>")) as client:
            assert client.health()["code"] == "JSON_ERROR"

    def test_anonymous_balance_on_error(self):
        with make_client(lambda r: httpx.Response(500)) as client:
            assert client.get_credits() == 0
