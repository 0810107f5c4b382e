"""Credit-ledger configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "secret_key": "insecure-dev-key-change-me",
    "api_key": "insecure-admin-key-change-me",
}

PLACEHOLDER_WALLET = "YOUR_WALLET_ADDRESS"

RPC_ENDPOINTS = {
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
}


class LedgerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    environment: str = "development"
    secret_key: str = "insecure-dev-key-change-me"
    api_key: str = "insecure-admin-key-change-me"
    webhook_secret: str = ""

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/ledger.db"
    db_timeout: float = 0.5  # seconds
    db_max_attempts: int = 3
    db_backoff_base: float = 0.05

    # API
    api_title: str = "Credit-Ledger"
    api_version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    # Ledger
    starting_credits: int = 5
    credits_per_unit: int = 10
    topup_amount: float = 0.5
    daily_claim_credits: int = 2

    # Quota: the day boundary is computed at a fixed UTC offset for every user
    free_interview_count: int = 1
    free_daily_limit: int = 2
    quota_utc_offset_hours: int = 1
    action_costs: dict[str, int] = {}

    # Chain
    solana_network: str = "devnet"
    solana_rpc_url: str = ""
    recipient_wallet: str = PLACEHOLDER_WALLET
    token_mints: dict[str, str] = {
        "USDC": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        "USDT": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
        "CASH": "CASHXWvxwjmrRdjMGJtD4K58z9mJYwg4x4Qq5NmN7cdL",
    }
    token_decimals: int = 6
    rpc_timeout: float = 5.0
    rpc_max_attempts: int = 3
    rpc_backoff_base: float = 0.5
    payment_timeout_seconds: int = 300

    @property
    def rpc_url(self) -> str:
        """Explicit RPC override, else the public endpoint for the network."""
        if self.solana_rpc_url:
            return self.solana_rpc_url
        return RPC_ENDPOINTS.get(self.solana_network, RPC_ENDPOINTS["devnet"])

    @property
    def chain_id(self) -> str:
        if self.solana_network == "mainnet-beta":
            return "solana"
        return f"solana-{self.solana_network}"

    def cost_for(self, action: str) -> int:
        return self.action_costs.get(action, 1)

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development":
            if insecure_fields:
                env_vars = ", ".join(f"LEDGER_{f.upper()}" for f in insecure_fields)
                raise RuntimeError(
                    f"Insecure default values detected in '{self.environment}' environment. "
                    f"Set these environment variables to secure values: {env_vars}. "
                    "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
                )
            if self.recipient_wallet == PLACEHOLDER_WALLET:
                raise RuntimeError(
                    "LEDGER_RECIPIENT_WALLET must be set to the wallet that receives payments"
                )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys; set LEDGER_SECRET_KEY and "
                "LEDGER_API_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> LedgerSettings:
    settings = LedgerSettings()
    settings.validate_for_production()
    return settings
