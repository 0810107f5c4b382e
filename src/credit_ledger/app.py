"""FastAPI application factory for the credit ledger."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from credit_ledger.common.config import LedgerSettings, get_settings
from credit_ledger.common.exceptions import StorageError
from credit_ledger.common.logging import setup_logging
from credit_ledger.common.schemas import ErrorResponse, HealthResponse
from credit_ledger.deps import build_container
from credit_ledger.payments.verifier import TransactionVerifier


def create_app(
    settings: LedgerSettings | None = None,
    verifier: TransactionVerifier | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    ledger = build_container(settings, verifier=verifier)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        await ledger.db.init()
        await ledger.db.create_all()
        yield
        # Shutdown
        await ledger.verifier.close()
        await ledger.db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )
    app.state.ledger = ledger

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Service temporarily unavailable",
                code=exc.code,
                detail="Safe to retry",
            ).model_dump(),
        )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from credit_ledger.credits.router import router as credits_router
    from credit_ledger.payments.router import router as payments_router
    from credit_ledger.quota.router import router as quota_router

    prefix = settings.api_prefix
    app.include_router(credits_router, prefix=prefix, tags=["credits"])
    app.include_router(payments_router, prefix=prefix, tags=["payments"])
    app.include_router(quota_router, prefix=prefix, tags=["usage"])

    return app
