"""Shared Pydantic schemas for the credit ledger."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "credit-ledger"


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: str = ""
