"""Application configuration using pydantic-settings.

All relay parameters (fees, margins, timeouts, reserve thresholds) come from
the environment or a local .env file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Telegram (alerts)
    # ======================
    telegram_bot_token: str = Field(default="", description="Telegram bot token for operator alerts")

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/swaprelay.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")
    dry_run: bool = Field(default=True, description="Simulate the venue and price feed")

    # ======================
    # Admin
    # ======================
    admin_user_ids: str = Field(
        default="", description="Comma-separated list of Telegram chat IDs receiving alerts"
    )
    admin_token: str = Field(default="", description="Admin API token for protected endpoints")

    # ======================
    # Chain
    # ======================
    rpc_url: str = Field(default="https://eth.llamarpc.com", description="JSON-RPC endpoint")
    chain_id: int = Field(default=1, description="EVM chain id used for signing")
    native_symbol: str = Field(default="ETH", description="Native fee currency symbol")
    relayer_private_key: Optional[str] = Field(
        default=None, description="Hex private key of the relayer account"
    )

    # ======================
    # Liquidity venue (0x)
    # ======================
    zerox_api_url: str = Field(default="https://api.0x.org", description="0x API base URL")
    zerox_api_key: str = Field(default="", description="0x API key")

    # ======================
    # Price oracle
    # ======================
    coingecko_api_url: str = Field(
        default="https://api.coingecko.com/api/v3", description="CoinGecko API base URL"
    )
    coingecko_api_key: str = Field(default="", description="CoinGecko demo API key")

    # ======================
    # Fees
    # ======================
    platform_fee_bps: int = Field(default=80, description="Platform fee in basis points")
    platform_fee_recipient: str = Field(
        default="0x0000000000000000000000000000000000000000",
        description="Address receiving the platform fee",
    )
    relay_fee_floor_usd: Decimal = Field(
        default=Decimal("0.05"), description="Reject intents whose relay fee is below this"
    )
    relay_fee_ceiling_usd: Decimal = Field(
        default=Decimal("50"), description="Reject intents whose relay fee is above this"
    )
    default_slippage_bps: int = Field(default=50, description="Default slippage (0.5%)")
    max_slippage_bps: int = Field(default=500, description="Maximum accepted slippage (5%)")
    margin_sample_blocks: int = Field(
        default=5, description="Blocks sampled to measure base-fee growth"
    )

    # Gas limits per relayer transaction
    gas_limit_pull: int = Field(default=120000, description="transferWithAuthorization gas")
    gas_limit_approval: int = Field(default=100000, description="ERC-20 approve gas")
    gas_limit_swap: int = Field(default=450000, description="Venue swap gas")
    gas_limit_transfer: int = Field(default=80000, description="ERC-20 transfer gas")

    # ======================
    # Timeouts (seconds)
    # ======================
    rpc_timeout_seconds: float = Field(default=15.0, description="Single JSON-RPC call timeout")
    quote_timeout_seconds: float = Field(default=15.0, description="Venue quote timeout")
    pull_timeout_seconds: float = Field(default=60.0, description="Custody pull confirmation")
    exchange_timeout_seconds: float = Field(default=180.0, description="Swap confirmation")
    disbursement_timeout_seconds: float = Field(
        default=60.0, description="Fee and net transfer confirmation"
    )
    authorization_expiry_margin_seconds: int = Field(
        default=10, description="Treat authorizations expiring within this window as stale"
    )

    # ======================
    # Monitoring
    # ======================
    relayer_warning_balance: Decimal = Field(
        default=Decimal("0.05"), description="Warn when relayer native balance drops below"
    )
    relayer_critical_balance: Decimal = Field(
        default=Decimal("0.01"), description="Stop accepting intents below this native balance"
    )
    monitor_interval_seconds: int = Field(default=60, description="Relayer balance check interval")
    reconcile_interval_seconds: int = Field(default=300, description="Reconciliation interval")
    reconcile_batch_size: int = Field(default=10, description="Records processed per run")
    stuck_intent_minutes: int = Field(
        default=30, description="Alert on non-terminal intents older than this"
    )

    @property
    def admin_ids(self) -> list[int]:
        """Parse admin user IDs into a list of integers."""
        if not self.admin_user_ids:
            return []
        return [int(uid.strip()) for uid in self.admin_user_ids.split(",") if uid.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_relayer_key(self) -> bool:
        return bool(self.relayer_private_key)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "telegram_bot_token": "***" if self.telegram_bot_token else "(not set)",
            "admin_user_ids": self.admin_user_ids or "(none)",
            "chain": {
                "rpc": self.rpc_url,
                "chain_id": self.chain_id,
                "relayer_key": "***" if self.relayer_private_key else "(not set)",
            },
            "venue": {
                "url": self.zerox_api_url,
                "api_key": "***" if self.zerox_api_key else "(not set)",
            },
            "fees": {
                "platform_fee_bps": self.platform_fee_bps,
                "relay_fee_floor_usd": str(self.relay_fee_floor_usd),
                "relay_fee_ceiling_usd": str(self.relay_fee_ceiling_usd),
                "default_slippage_bps": self.default_slippage_bps,
            },
            "monitoring": {
                "relayer_warning_balance": str(self.relayer_warning_balance),
                "relayer_critical_balance": str(self.relayer_critical_balance),
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
