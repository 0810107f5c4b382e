"""
LedgerClient SDK: sync client for the credit-ledger API.

Used by the AI service and front-end backends to read balances, gate usage
and submit payments for verification.
"""

import time
from typing import Any, Callable, Optional

import httpx

from credit_ledger.common.retry import RetryPolicy


class TransientHTTPError(Exception):
    """Timeout, transport failure, 5xx or 429; worth another attempt."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class LedgerClient:
    """
    Synchronous HTTP client for the credit ledger.

    Every call returns parsed JSON, or a dict with ``error`` and ``code`` keys
    when the request could not be completed.
    """

    def __init__(
        self,
        server_url: str = "http://localhost:8080",
        identity_token: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_base: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.server_url = server_url.rstrip("/")
        self.identity_token = identity_token
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_policy = RetryPolicy(
            max_attempts=max_retries,
            base_delay=retry_backoff_base,
            retry_on=(TransientHTTPError,),
            jitter=0,
        )
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=self.server_url,
            timeout=timeout,
            transport=transport,
        )

    def _user_headers(self) -> dict[str, str]:
        headers = {}
        if self.identity_token:
            headers["Authorization"] = f"Bearer {self.identity_token}"
        return headers

    def _admin_headers(self) -> dict[str, str]:
        headers = {}
        if self.api_key:
            headers["X-Ledger-Api-Key"] = self.api_key
        return headers

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientHTTPError("timeout") from e
        except httpx.HTTPError as e:
            raise TransientHTTPError(str(e)) from e
        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientHTTPError(f"HTTP {resp.status_code}", resp.status_code)
        return resp

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Central HTTP method with retry and structured error handling.

        Retries timeouts, transport errors, 5xx and 429 with exponential
        backoff. No retry on other 4xx errors.
        """
        try:
            resp = self.retry_policy.run_sync(
                lambda: self._send(method, path, **kwargs), sleep=self._sleep,
            )
        except TransientHTTPError as e:
            if e.status_code is not None:
                return {
                    "error": f"Server error: {e.status_code}",
                    "code": "SERVER_ERROR",
                    "status_code": e.status_code,
                }
            return {
                "error": f"All {self.max_retries} retries exhausted: {e}",
                "code": "CONNECTION_ERROR",
            }

        try:
            data = resp.json()
        except ValueError:
            return {"error": "Invalid JSON response", "code": "JSON_ERROR"}

        if resp.status_code == 402:
            detail = data.get("detail", {})
            return {
                "error": "Payment required",
                "code": "PAYMENT_REQUIRED",
                "status_code": 402,
                "payment_requirements": detail.get("payment_requirements", {}),
            }
        if resp.status_code >= 400:
            return {
                "error": data.get("detail", f"Client error: {resp.status_code}"),
                "code": "CLIENT_ERROR",
                "status_code": resp.status_code,
            }
        return data

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def get_credits(self) -> int:
        """Current balance of the token's user (0 when anonymous or on error)."""
        data = self._request("GET", "/credits", headers=self._user_headers())
        return int(data.get("credits", 0))

    def request_payment(self, amount: Optional[float] = None, token: str = "USDC") -> dict[str, Any]:
        """Fetch payment requirements with a fresh nonce."""
        body: dict[str, Any] = {"token": token}
        if amount is not None:
            body["amount"] = str(amount)
        return self._request(
            "POST", "/payment/intents", json=body, headers=self._user_headers(),
        )

    def verify_payment(
        self, transaction_id: str, nonce: str, amount: float, token: str = "USDC",
    ) -> dict[str, Any]:
        """Submit a sent transaction. ``status`` is ``pending`` until finalized."""
        return self._request(
            "POST",
            "/payment/verify",
            json={
                "transactionId": transaction_id,
                "nonce": nonce,
                "amount": str(amount),
                "token": token,
            },
            headers=self._user_headers(),
        )

    def get_payment_record(self, transaction_id: str) -> dict[str, Any]:
        return self._request(
            "GET",
            "/payment/records",
            params={"transaction_id": transaction_id},
            headers=self._admin_headers(),
        )

    def check_usage(self, action: str, cost: Optional[int] = None) -> dict[str, Any]:
        return self._request(
            "POST", "/usage/check",
            json={"action": action, "cost": cost},
            headers=self._user_headers(),
        )

    def consume_usage(self, action: str, cost: Optional[int] = None) -> dict[str, Any]:
        return self._request(
            "POST", "/usage/consume",
            json={"action": action, "cost": cost},
            headers=self._user_headers(),
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()

    def __enter__(self) -> "LedgerClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
