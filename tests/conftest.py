"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from coinservice.config import Settings
from coinservice.hbar.adapter import HbarNodeAdapter
from coinservice.hbar.keys import HederaPrivateKey
from coinservice.safe_logger import set_log_sink

# Deterministic operator key (not for production use!)
OPERATOR_KEY_HEX = "11" * 32
OPERATOR_ID = "0.0.1001"

RPC_URL = "https://rpc.example.com"
MIRROR_URL = "https://mirror.example.com"


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch):
    """Disable safe_log output unless a test re-enables it."""
    monkeypatch.setenv("COINSVC_ENVIRONMENT", "test")
    monkeypatch.delenv("COINSVC_LOG_DISABLED", raising=False)
    yield
    set_log_sink(None)


@pytest.fixture
def operator_key() -> HederaPrivateKey:
    return HederaPrivateKey(bytes.fromhex(OPERATOR_KEY_HEX))


@pytest.fixture
def settings(operator_key: HederaPrivateKey) -> Settings:
    return Settings(
        operator_id=OPERATOR_ID,
        operator_key=operator_key.to_string(),
        receipt_poll_attempts=3,
        receipt_poll_interval=0,
    )


@pytest.fixture
def adapter_factory() -> Callable[..., HbarNodeAdapter]:
    """Build an adapter whose HTTP traffic is answered by ``handler``."""

    def factory(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> HbarNodeAdapter:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        options = {
            "network": "HBAR",
            "name": "QuickNode",
            "rpc_url": RPC_URL,
            "mirror_url": MIRROR_URL,
            "confirmation_limit": 10,
        }
        options.update(kwargs)
        return HbarNodeAdapter(client=client, **options)

    return factory
