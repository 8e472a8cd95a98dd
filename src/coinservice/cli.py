"""
coinservice CLI - query Hedera chain state, validate keys, create accounts and send HBAR.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from loguru import logger
from pydantic import BaseModel

from coinservice.config import get_settings
from coinservice.errors import CoinServiceError
from coinservice.hbar.service import HbarCoinService
from coinservice.models import TransactionParams, TransferLeg
from coinservice.safe_logger import setup_logging

app = typer.Typer(
    name="coinservice",
    help="Multi-network coin service (Hedera)",
    add_completion=False,
)

T = TypeVar("T")

RpcUrlOption = typer.Option(None, "--rpc-url", envvar="COINSVC_RPC_URL", help="JSON-RPC relay URL")
MirrorUrlOption = typer.Option(
    None, "--mirror-url", envvar="COINSVC_MIRROR_URL", help="Mirror node URL"
)
LogLevelOption = typer.Option("WARNING", "--log-level", "-l")


def build_service(rpc_url: str | None, mirror_url: str | None) -> HbarCoinService:
    settings = get_settings()
    service = HbarCoinService(settings)
    service.init_nodes(
        {
            "default": {
                "rpc_url": rpc_url or settings.rpc_url,
                "mirror_url": mirror_url or settings.mirror_url,
            }
        }
    )
    return service


def _run(service: HbarCoinService, operation: Callable[[], Awaitable[T]]) -> T:
    async def runner() -> T:
        try:
            return await operation()
        finally:
            await service.close()

    try:
        return asyncio.run(runner())
    except CoinServiceError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


def _print_model(model: BaseModel) -> None:
    print(model.model_dump_json(indent=2, by_alias=True))


@app.command()
def height(
    rpc_url: str | None = RpcUrlOption,
    mirror_url: str | None = MirrorUrlOption,
    log_level: str = LogLevelOption,
) -> None:
    """Show current chain height."""
    setup_logging(log_level)
    service = build_service(rpc_url, mirror_url)
    print(_run(service, lambda: service.nodes[0].get_height()))


@app.command()
def balance(
    address: str = typer.Argument(..., help="Account id, e.g. 0.0.1234"),
    ticker: str = typer.Option("HBAR", "--ticker", "-t", help="HBAR or a token id"),
    rpc_url: str | None = RpcUrlOption,
    mirror_url: str | None = MirrorUrlOption,
    log_level: str = LogLevelOption,
) -> None:
    """Show balance of an account."""
    setup_logging(log_level)
    service = build_service(rpc_url, mirror_url)
    _print_model(_run(service, lambda: service.nodes[0].balance_by_address(ticker, address)))


@app.command()
def tx(
    transaction_id: str = typer.Argument(..., help="Transaction id, e.g. 0.0.1234@1700000000.0"),
    rpc_url: str | None = RpcUrlOption,
    mirror_url: str | None = MirrorUrlOption,
    log_level: str = LogLevelOption,
) -> None:
    """Show a transaction."""
    setup_logging(log_level)
    service = build_service(rpc_url, mirror_url)
    result = _run(
        service, lambda: service.nodes[0].tx_by_hash(service.network, transaction_id)
    )
    _print_model(result)


@app.command()
def block(
    number: int = typer.Argument(..., help="Block number"),
    rpc_url: str | None = RpcUrlOption,
    mirror_url: str | None = MirrorUrlOption,
    log_level: str = LogLevelOption,
) -> None:
    """Show a block and its transactions."""
    setup_logging(log_level)
    service = build_service(rpc_url, mirror_url)
    _print_model(_run(service, lambda: service.nodes[0].get_block(number)))


@app.command()
def validate(
    address: str = typer.Argument(...),
    private_key: str = typer.Option("", "--private-key", envvar="COINSVC_PRIVATE_KEY"),
    public_key: str = typer.Option("", "--public-key"),
    log_level: str = LogLevelOption,
) -> None:
    """Validate an account id with its key pair."""
    setup_logging(log_level)
    service = HbarCoinService(get_settings())
    result = asyncio.run(
        service.address_validate(service.network, address, private_key, public_key)
    )
    if result is True:
        print("valid")
        return
    print(f"invalid: {result}")
    raise typer.Exit(1)


@app.command("create-address")
def create_address(
    rpc_url: str | None = RpcUrlOption,
    mirror_url: str | None = MirrorUrlOption,
    log_level: str = LogLevelOption,
) -> None:
    """Create a new account paid by the configured operator."""
    setup_logging(log_level)
    service = build_service(rpc_url, mirror_url)
    _print_model(_run(service, lambda: service.address_create(service.network)))


@app.command()
def send(
    sender: str = typer.Argument(..., help="Sender account id"),
    recipient: str = typer.Argument(..., help="Recipient account id"),
    amount: str = typer.Argument(..., help="Amount in HBAR"),
    private_key: str = typer.Option(
        ..., "--private-key", envvar="COINSVC_PRIVATE_KEY", help="Sender private key"
    ),
    rpc_url: str | None = RpcUrlOption,
    mirror_url: str | None = MirrorUrlOption,
    log_level: str = LogLevelOption,
) -> None:
    """Build, sign and broadcast an HBAR transfer."""
    setup_logging(log_level)
    service = build_service(rpc_url, mirror_url)
    params = TransactionParams(
        from_=TransferLeg(address=sender, value=amount),
        to=TransferLeg(address=recipient, value=amount),
    )

    async def transfer():
        built = await service.tx_build(service.network, params)
        signed = await service.tx_sign(service.network, {sender: private_key}, built)
        return await service.nodes[0].tx_broadcast(service.network, signed)

    result = _run(service, transfer)
    _print_model(result)
    if not result.ok:
        raise typer.Exit(1)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
