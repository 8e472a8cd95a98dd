"""
Settings for coinservice, loaded from the environment or a .env file.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COINSVC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # Operator pays for account creation and freezes transfers
    operator_id: str | None = None
    operator_key: SecretStr | None = None

    # Default node endpoints used by the CLI
    rpc_url: str | None = None
    mirror_url: str | None = None

    # 1 HBAR = 100,000,000 tinybars
    tinybar_conversion_factor: int = Field(default=100_000_000, gt=0)

    node_account_id: str = "0.0.3"
    # gRPC host:port of that node, e.g. 0.testnet.hedera.com:50211
    node_grpc_endpoint: str | None = None
    max_transaction_fee: int = Field(default=200_000_000, ge=0, description="Tinybars")
    transaction_valid_duration: int = Field(default=120, ge=1, le=180, description="Seconds")
    transaction_memo: str = Field(default="", max_length=100)

    initial_account_balance: Decimal = Field(default=Decimal("1"), gt=0, description="HBAR")
    auto_renew_period: int = Field(default=7_776_000, ge=1, description="Seconds")

    request_timeout: float = Field(default=30.0, gt=0)
    receipt_poll_attempts: int = Field(default=10, ge=1)
    receipt_poll_interval: float = Field(default=2.0, ge=0)

    # Let tx_sign build the transaction itself when unsigned_tx is empty
    sign_rebuilds: bool = False


def get_settings() -> Settings:
    return Settings()
