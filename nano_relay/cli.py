"""
CLI entry point for the relay.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
import structlog
import typer
from dotenv import load_dotenv

from .amounts import raw_to_nano
from .config import RelayConfig
from .errors import NanoRelayError
from .keys import address_from_secret, derive_public_key, derive_secret_from_message, seed_hash
from .relay import RelayResult

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="nano-relay",
    help="Hide a message in a two-account relay on the Nano ledger",
    add_completion=False,
)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to .env configuration file")
PrivateKeyOption = typer.Option(
    ...,
    "--private-key",
    "-k",
    envvar="RELAY_PRIVATE_KEY",
    prompt=True,
    hide_input=True,
    help="Hex private key of the account to relay from",
)


def _print_result(result: RelayResult) -> None:
    typer.echo(f"  Original:  {result.original_address}")
    typer.echo(f"  Secondary: {result.secondary_address}")
    typer.echo(f"  Amount:    {result.amount} raw ({raw_to_nano(result.amount)} nano)")
    for step, block in result.blocks.items():
        typer.echo(f"  {step.value:<22} {block.hash}")
    typer.echo(f"  Balance:   {result.original_state.balance} raw")
    typer.echo("")
    typer.echo("Token:")
    typer.echo(result.token)


@app.command()
def relay(
    message: str = typer.Argument(..., help="Message to hide"),
    private_key: str = PrivateKeyOption,
    config_path: Optional[Path] = ConfigOption,
    no_journal: bool = typer.Option(False, "--no-journal", help="Do not record the relay"),
) -> None:
    """
    Relay the full balance through the message's secondary account and back.
    """
    config = RelayConfig.from_env(config_path)
    orchestrator = config.create_orchestrator(with_journal=not no_journal)

    try:
        result = orchestrator.relay(message, private_key.strip())
    except (NanoRelayError, httpx.HTTPError) as e:
        typer.echo(f"Relay failed: {e}", err=True)
        raise typer.Exit(1)
    finally:
        orchestrator.close()

    typer.echo("Relay complete:")
    _print_result(result)


@app.command()
def resume(
    message: str = typer.Argument(..., help="Message of the stuck relay"),
    private_key: str = PrivateKeyOption,
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Return funds left at a message's secondary account.
    """
    config = RelayConfig.from_env(config_path)
    orchestrator = config.create_orchestrator()

    try:
        result = orchestrator.resume(message, private_key.strip())
    except (NanoRelayError, httpx.HTTPError) as e:
        typer.echo(f"Resume failed: {e}", err=True)
        raise typer.Exit(1)
    finally:
        orchestrator.close()

    typer.echo("Relay settled:")
    _print_result(result)


@app.command()
def reveal(
    token: str = typer.Argument(..., help="Token returned by relay"),
    recipient: str = typer.Argument(..., help="Original account address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Decrypt a token and show when its relay settled.
    """
    config = RelayConfig.from_env(config_path)
    codec = config.create_codec()

    try:
        revealed = codec.reveal(token, recipient)
    except (NanoRelayError, httpx.HTTPError) as e:
        typer.echo(f"Reveal failed: {e}", err=True)
        raise typer.Exit(1)
    finally:
        codec.close()

    typer.echo(f"Message:   {revealed.message}")
    typer.echo(f"Secondary: {revealed.secondary_address}")
    typer.echo(f"Send:      {revealed.send_hash}")
    if revealed.timestamp is not None:
        when = datetime.fromtimestamp(revealed.timestamp, tz=timezone.utc)
        typer.echo(f"Settled:   {when.isoformat()}")


@app.command()
def derive(
    secret: str = typer.Argument(..., help="Hex private key"),
    prefix: str = typer.Option("nano_", "--prefix", help="Address prefix"),
) -> None:
    """Show public key and address of a private key."""
    try:
        public_key = derive_public_key(secret.strip())
        address = address_from_secret(secret.strip(), prefix)
    except NanoRelayError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Public key: {public_key}")
    typer.echo(f"Address:    {address}")


@app.command("hash")
def hash_message(
    message: str = typer.Argument(..., help="Message to hash"),
) -> None:
    """Show the secondary account a message maps to."""
    secret = derive_secret_from_message(message)
    typer.echo(f"Secondary address: {address_from_secret(secret)}")
    typer.echo(f"Seed hash:         {seed_hash(secret)}")


@app.command()
def account(
    address: str = typer.Argument(..., help="Account address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Show frontier, balance and receivable blocks of an account."""
    config = RelayConfig.from_env(config_path)
    ledger = config.create_ledger()

    try:
        state = ledger.get_account_state(address)
        receivables = ledger.get_receivables(address)
    except (NanoRelayError, httpx.HTTPError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        ledger.close()

    typer.echo(f"Account:        {state.account}")
    typer.echo(f"Opened:         {state.is_opened}")
    typer.echo(f"Frontier:       {state.frontier}")
    typer.echo(f"Balance:        {state.balance} raw ({raw_to_nano(state.balance)} nano)")
    typer.echo(f"Representative: {state.representative}")
    for pending in receivables:
        typer.echo(f"  receivable {pending.hash}: {pending.amount} raw")


@app.command()
def stuck(
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """List relays that did not finish."""
    config = RelayConfig.from_env(config_path)
    journal = config.create_journal()
    try:
        records = journal.list_unfinished()
    finally:
        journal.close()

    if not records:
        typer.echo("No unfinished relays.")
        return

    for record in records:
        typer.echo(f"#{record.id} {record.status} at {record.step}")
        typer.echo(f"  Original:  {record.original_address}")
        typer.echo(f"  Secondary: {record.secondary_address}")
        if record.amount_raw is not None:
            typer.echo(f"  Amount:    {record.amount_raw} raw")
        for step, block_hash in record.block_hashes.items():
            typer.echo(f"  {step:<22} {block_hash}")
        if record.error:
            typer.echo(f"  Error:     {record.error}")
        typer.echo("")


@app.command()
def version() -> None:
    """Show the relay version."""
    from nano_relay import __version__
    typer.echo(f"nano-relay v{__version__}")


def main() -> None:
    """Main entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
