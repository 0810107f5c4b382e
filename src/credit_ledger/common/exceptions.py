"""Credit-ledger exception hierarchy."""


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    def __init__(self, message: str = "", code: str = "LEDGER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(LedgerError):
    """Raised for missing or malformed input. Never retried."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, code="VALIDATION_ERROR")


class DuplicateError(LedgerError):
    """Raised when a transaction id or nonce is already registered."""

    def __init__(self, message: str = "Record already exists", reason: str = "DUPLICATE"):
        self.reason = reason
        super().__init__(message, code="DUPLICATE")


class NotFoundError(LedgerError):
    """Raised when a payment record or user cannot be found."""

    def __init__(self, message: str = "Record not found"):
        super().__init__(message, code="NOT_FOUND")


class StorageError(LedgerError):
    """Raised when the datastore is unavailable. Always retryable."""

    def __init__(self, message: str = "Datastore unavailable"):
        super().__init__(message, code="STORAGE_ERROR")


class VerificationError(LedgerError):
    """On-chain verification did not succeed.

    ``retryable`` separates "could not confirm yet" from "payment is invalid".
    """

    retryable = False

    def __init__(self, message: str = "Payment verification failed", code: str = "VERIFICATION_FAILED"):
        super().__init__(message, code=code)


class TransactionNotFoundError(VerificationError):
    retryable = True

    def __init__(self, message: str = "Transaction not found on chain"):
        super().__init__(message, code="NOT_FOUND_ON_CHAIN")


class NotFinalizedError(VerificationError):
    retryable = True

    def __init__(self, message: str = "Transaction is not finalized yet"):
        super().__init__(message, code="NOT_FINALIZED")


class RpcError(VerificationError):
    retryable = True

    def __init__(self, message: str = "Chain RPC unavailable"):
        super().__init__(message, code="RPC_ERROR")


class AmountMismatchError(VerificationError):
    def __init__(self, message: str = "Transferred amount is below the expected amount"):
        super().__init__(message, code="AMOUNT_MISMATCH")


class RecipientMismatchError(VerificationError):
    def __init__(self, message: str = "Recipient does not match payment requirements"):
        super().__init__(message, code="RECIPIENT_MISMATCH")


class TokenMismatchError(VerificationError):
    def __init__(self, message: str = "Token does not match payment requirements"):
        super().__init__(message, code="TOKEN_MISMATCH")


class TransactionFailedError(VerificationError):
    def __init__(self, message: str = "Transaction failed on chain"):
        super().__init__(message, code="TRANSACTION_FAILED")
