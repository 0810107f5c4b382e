"""On-chain payment verification against a Solana JSON-RPC endpoint."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import httpx

from credit_ledger.common.config import LedgerSettings
from credit_ledger.common.exceptions import (
    AmountMismatchError,
    NotFinalizedError,
    RecipientMismatchError,
    RpcError,
    TokenMismatchError,
    TransactionFailedError,
    TransactionNotFoundError,
    VerificationError,
)
from credit_ledger.common.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    success: bool
    actual_amount: Optional[Decimal] = None
    code: str = ""
    error: str = ""
    retryable: bool = False

    @classmethod
    def failed(cls, exc: VerificationError) -> "VerificationResult":
        return cls(
            success=False,
            code=exc.code,
            error=exc.message,
            retryable=exc.retryable,
        )


class SolanaRpcClient:
    """Minimal JSON-RPC client with timeout and bounded retry."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(retry_on=(RpcError,))
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._request_id = 0

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            )
        return self._http_client

    async def _call_once(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            resp = await self._get_http_client().post(self.url, json=body)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as exc:
            raise RpcError(f"{method} timed out") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise RpcError(f"{method} failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise RpcError(f"{method} returned a malformed response")
        if payload.get("error"):
            error = payload["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise RpcError(f"{method} returned error: {message}")
        return payload.get("result")

    async def call(self, method: str, params: list[Any]) -> Any:
        return await self.retry_policy.run(lambda: self._call_once(method, params))

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def _as_dict(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise RpcError(f"Malformed {what} in RPC response")
    return value


def _token_balances(meta: dict, key: str) -> list[dict]:
    balances = meta.get(key) or []
    if not isinstance(balances, list):
        raise RpcError(f"Malformed {key} in RPC response")
    return [_as_dict(entry, key) for entry in balances]


def _owned_balances(balances: list[dict], mint: str, owner: str) -> dict[int, int]:
    """Raw token amounts keyed by account index for one mint and owner."""
    amounts = {}
    for entry in balances:
        if entry.get("mint") != mint or entry.get("owner") != owner:
            continue
        raw = _as_dict(entry.get("uiTokenAmount") or {}, "uiTokenAmount").get("amount", "0")
        try:
            amounts[entry.get("accountIndex")] = int(raw)
        except (TypeError, ValueError) as exc:
            raise RpcError(f"Malformed token amount {raw!r} in RPC response") from exc
    return amounts


class TransactionVerifier:
    """Checks that a transaction signature pays the expected amount to the ledger wallet.

    Every mismatch is reported as a structured :class:`VerificationResult`.
    Transport failures and malformed RPC responses come back as a retryable
    RPC_ERROR.
    """

    def __init__(self, settings: LedgerSettings, rpc: SolanaRpcClient | None = None):
        self.settings = settings
        self.rpc = rpc or SolanaRpcClient(
            settings.rpc_url,
            timeout=settings.rpc_timeout,
            retry_policy=RetryPolicy(
                max_attempts=settings.rpc_max_attempts,
                base_delay=settings.rpc_backoff_base,
                retry_on=(RpcError,),
            ),
        )

    async def verify_payment(
        self,
        transaction_id: str,
        expected_user_id: str,
        expected_amount: Decimal | float | str,
        expected_token: str,
        expected_recipient: str,
    ) -> VerificationResult:
        context = {"transaction_id": transaction_id, "user_id": expected_user_id}
        try:
            actual = await self._verify(
                transaction_id,
                Decimal(str(expected_amount)),
                expected_token,
                expected_recipient,
            )
        except VerificationError as exc:
            level = logging.INFO if exc.retryable else logging.WARNING
            logger.log(
                level,
                "Payment verification failed: %s", exc.message,
                extra={"context": {**context, "code": exc.code}},
            )
            return VerificationResult.failed(exc)

        logger.info(
            "Payment verified on chain",
            extra={"context": {**context, "amount": str(actual)}},
        )
        return VerificationResult(success=True, actual_amount=actual)

    async def _verify(
        self,
        transaction_id: str,
        expected_amount: Decimal,
        expected_token: str,
        expected_recipient: str,
    ) -> Decimal:
        mint = self.settings.token_mints.get(expected_token)
        if mint is None:
            raise TokenMismatchError(f"Unsupported token {expected_token}")

        statuses = await self.rpc.call(
            "getSignatureStatuses",
            [[transaction_id], {"searchTransactionHistory": True}],
        )
        values = _as_dict(statuses or {}, "signature statuses").get("value") or [None]
        if not isinstance(values, list):
            raise RpcError("Malformed signature statuses in RPC response")
        status = values[0]
        if status is None:
            raise TransactionNotFoundError()
        status = _as_dict(status, "signature status")
        if status.get("err"):
            raise TransactionFailedError()
        if status.get("confirmationStatus") != "finalized":
            raise NotFinalizedError()

        tx = await self.rpc.call(
            "getTransaction",
            [
                transaction_id,
                {
                    "encoding": "jsonParsed",
                    "commitment": "finalized",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not tx:
            raise TransactionNotFoundError()
        meta = _as_dict(_as_dict(tx, "transaction").get("meta") or {}, "transaction meta")
        if meta.get("err"):
            raise TransactionFailedError()

        pre = _token_balances(meta, "preTokenBalances")
        post = _token_balances(meta, "postTokenBalances")
        if not any(entry.get("mint") == mint for entry in pre + post):
            raise TokenMismatchError()

        post_owned = _owned_balances(post, mint, expected_recipient)
        if not post_owned:
            raise RecipientMismatchError()
        pre_owned = _owned_balances(pre, mint, expected_recipient)
        received_raw = sum(
            amount - pre_owned.get(index, 0) for index, amount in post_owned.items()
        )

        scale = Decimal(10) ** self.settings.token_decimals
        received = Decimal(received_raw) / scale
        if received_raw < expected_amount * scale:
            raise AmountMismatchError(
                f"Received {received} {expected_token}, expected {expected_amount}"
            )
        return received

    async def close(self) -> None:
        await self.rpc.close()
