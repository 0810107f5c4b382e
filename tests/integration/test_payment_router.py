"""Integration tests for payment record, intent and verification endpoints."""

import re

import pytest

from credit_ledger.payments.nonces import generate_nonce

RECIPIENT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
NONCE_RE = re.compile(r"^[a-f0-9]{32}$")


async def _create(client, admin_headers, **overrides):
    body = {"user_id": "user-1", "transaction_id": "tx-1", "expected_amount": "0.5", "token": "USDC"}
    body.update(overrides)
    return await client.post("/payment/records", json=body, headers=admin_headers)


class TestPaymentRecords:
    async def test_create_record(self, client, admin_headers):
        resp = await _create(client, admin_headers)
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "pending"
        assert data["recipient"] == RECIPIENT
        assert NONCE_RE.match(data["nonce"])
        assert data["credits_added"] == 0

    async def test_requires_api_key(self, client):
        resp = await _create(client, {"X-Ledger-Api-Key": "wrong"})
        assert resp.status_code == 403

    async def test_duplicate_transaction(self, client, admin_headers):
        await _create(client, admin_headers)
        resp = await _create(client, admin_headers, user_id="user-2")
        assert resp.status_code == 400
        assert "already exists" in resp.json()["detail"]

    async def test_duplicate_nonce(self, client, admin_headers):
        nonce = generate_nonce()
        await _create(client, admin_headers, nonce=nonce)
        resp = await _create(client, admin_headers, transaction_id="tx-2", nonce=nonce)
        assert resp.status_code == 400

    @pytest.mark.parametrize("overrides", [
        {"expected_amount": "0"},
        {"expected_amount": "-1"},
        {"token": "DOGE"},
        {"nonce": "XYZ"},
    ])
    async def test_invalid_record(self, client, admin_headers, overrides):
        resp = await _create(client, admin_headers, **overrides)
        assert resp.status_code == 400

    async def test_get_record(self, client, admin_headers):
        await _create(client, admin_headers)
        resp = await client.get("/payment/records", params={"transaction_id": "tx-1"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["transaction_id"] == "tx-1"

    async def test_get_missing_record(self, client, admin_headers):
        resp = await client.get("/payment/records", params={"transaction_id": "nope"}, headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Payment record not found"


class TestPatchStatus:
    async def test_confirm_credits_user_once(self, client, admin_headers, auth_headers):
        await _create(client, admin_headers)
        for _ in range(2):
            resp = await client.patch(
                "/payment/records", params={"transaction_id": "tx-1"},
                json={"status": "confirmed"}, headers=admin_headers,
            )
            assert resp.status_code == 200
            assert resp.json() == {"success": True, "transaction_id": "tx-1", "status": "confirmed"}

        resp = await client.get("/credits", headers=auth_headers("user-1"))
        assert resp.json()["credits"] == 10

    async def test_confirmed_cannot_fail(self, client, admin_headers):
        await _create(client, admin_headers)
        await client.patch(
            "/payment/records", params={"transaction_id": "tx-1"},
            json={"status": "confirmed"}, headers=admin_headers,
        )
        resp = await client.patch(
            "/payment/records", params={"transaction_id": "tx-1"},
            json={"status": "failed"}, headers=admin_headers,
        )
        assert resp.json()["success"] is False
        assert resp.json()["status"] == "confirmed"

    async def test_fail_record(self, client, admin_headers):
        await _create(client, admin_headers)
        resp = await client.patch(
            "/payment/records", params={"transaction_id": "tx-1"},
            json={"status": "failed"}, headers=admin_headers,
        )
        assert resp.json() == {"success": True, "transaction_id": "tx-1", "status": "failed"}

    async def test_pending_not_allowed(self, client, admin_headers):
        await _create(client, admin_headers)
        resp = await client.patch(
            "/payment/records", params={"transaction_id": "tx-1"},
            json={"status": "pending"}, headers=admin_headers,
        )
        assert resp.status_code == 422

    async def test_missing_record(self, client, admin_headers):
        resp = await client.patch(
            "/payment/records", params={"transaction_id": "nope"},
            json={"status": "confirmed"}, headers=admin_headers,
        )
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Payment record not found"


class TestPaymentIntents:
    async def test_requires_authentication(self, client):
        resp = await client.post("/payment/intents", json={})
        assert resp.status_code == 401

    async def test_default_intent(self, client, auth_headers):
        resp = await client.post("/payment/intents", json={}, headers=auth_headers("user-1"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["amount"] == "0.5"
        assert data["token"] == "USDC"
        assert data["pay_to"] == RECIPIENT
        assert data["credits"] == 5
        assert NONCE_RE.match(data["nonce"])

    async def test_intents_get_fresh_nonces(self, client, auth_headers):
        headers = auth_headers("user-1")
        first = (await client.post("/payment/intents", json={}, headers=headers)).json()
        second = (await client.post("/payment/intents", json={}, headers=headers)).json()
        assert first["nonce"] != second["nonce"]

    async def test_unknown_token(self, client, auth_headers):
        resp = await client.post("/payment/intents", json={"token": "DOGE"}, headers=auth_headers("user-1"))
        assert resp.status_code == 400


class TestVerifyPayment:
    def _body(self, nonce, tx="tx-1", amount="0.5"):
        return {"transactionId": tx, "nonce": nonce, "amount": amount, "token": "USDC"}

    async def test_verify_and_credit(self, client, auth_headers, fake_verifier):
        nonce = generate_nonce()
        resp = await client.post("/payment/verify", json=self._body(nonce), headers=auth_headers("user-1"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["status"] == "confirmed"
        assert data["credits"] == 10
        assert data["credits_added"] == 5
        assert fake_verifier.calls[0][4] == RECIPIENT

    async def test_client_retry_is_idempotent(self, client, auth_headers):
        nonce = generate_nonce()
        headers = auth_headers("user-1")
        await client.post("/payment/verify", json=self._body(nonce), headers=headers)
        resp = await client.post("/payment/verify", json=self._body(nonce), headers=headers)
        assert resp.status_code == 200
        assert resp.json()["already_processed"] is True
        assert resp.json()["credits"] == 10

    async def test_replay_by_another_user(self, client, auth_headers):
        nonce = generate_nonce()
        await client.post("/payment/verify", json=self._body(nonce), headers=auth_headers("alice"))
        resp = await client.post("/payment/verify", json=self._body(nonce), headers=auth_headers("mallory"))
        assert resp.status_code == 400
        resp = await client.get("/credits", headers=auth_headers("mallory"))
        assert resp.json()["credits"] == 5

    async def test_replay_with_new_nonce(self, client, auth_headers):
        headers = auth_headers("user-1")
        await client.post("/payment/verify", json=self._body(generate_nonce()), headers=headers)
        resp = await client.post("/payment/verify", json=self._body(generate_nonce()), headers=headers)
        assert resp.status_code == 400

    async def test_nonce_reuse_across_transactions(self, client, auth_headers):
        nonce = generate_nonce()
        headers = auth_headers("user-1")
        await client.post("/payment/verify", json=self._body(nonce, tx="tx-1"), headers=headers)
        resp = await client.post("/payment/verify", json=self._body(nonce, tx="tx-2"), headers=headers)
        assert resp.status_code == 400

    async def test_not_finalized_is_pending(self, client, auth_headers, fake_verifier):
        fake_verifier.fail("NOT_FINALIZED", retryable=True)
        nonce = generate_nonce()
        headers = auth_headers("user-1")
        resp = await client.post("/payment/verify", json=self._body(nonce), headers=headers)
        assert resp.status_code == 202
        assert resp.json()["status"] == "pending"

        fake_verifier.succeed()
        resp = await client.post("/payment/verify", json=self._body(nonce), headers=headers)
        assert resp.status_code == 200
        assert resp.json()["credits"] == 10

    async def test_amount_mismatch(self, client, auth_headers, fake_verifier, admin_headers):
        fake_verifier.fail("AMOUNT_MISMATCH")
        resp = await client.post(
            "/payment/verify", json=self._body(generate_nonce()), headers=auth_headers("user-1"),
        )
        assert resp.status_code == 400
        record = await client.get("/payment/records", params={"transaction_id": "tx-1"}, headers=admin_headers)
        assert record.json()["status"] == "failed"

    async def test_invalid_nonce_format(self, client, auth_headers):
        resp = await client.post(
            "/payment/verify", json=self._body("not-a-nonce"), headers=auth_headers("user-1"),
        )
        assert resp.status_code == 400

    async def test_requires_authentication(self, client):
        resp = await client.post("/payment/verify", json=self._body(generate_nonce()))
        assert resp.status_code == 401
