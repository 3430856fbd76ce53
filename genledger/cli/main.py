"""
CLI interface for genledger.

Operator access to balances, grants, refunds and purchase reconciliation.
"""

import logging
import sys
from dataclasses import replace
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from genledger.config.loader import StorageConfig, default_config, load_config
from genledger.core.errors import GenLedgerError, ServerMisconfigured
from genledger.services import Services, build_services
from genledger.storage.models import LedgerEntry

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_INSUFFICIENT = 2  # Debit rejected, nothing changed


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _services(ctx: typer.Context) -> Services:
    """Build services from the options given to the root command."""
    options = ctx.obj or {}
    config_path = options.get("config")
    config = load_config(config_path) if config_path else default_config()
    db_path = options.get("db")
    if db_path:
        config = replace(config, storage=StorageConfig(db_path=db_path))
    return build_services(config)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config file"),
    db: Optional[str] = typer.Option(None, "--db", help="Override the SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """genledger CLI."""
    _configure_logging(verbose)
    ctx.obj = {"config": config, "db": db}
    if ctx.invoked_subcommand is None:
        console.print("genledger - Use --help to see available commands")


@app.command()
def status(ctx: typer.Context):
    """Show which capabilities are configured."""
    try:
        services = _services(ctx)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Database: {services.config.storage.db_path}")
    for name, ready in (("Extraction", services.extractor), ("Reconciliation", services.reconciler)):
        mark = "[green]✓[/]" if ready is not None else "[yellow]✗[/]"
        console.print(f"{mark} {name} {'enabled' if ready is not None else 'disabled'}")


@app.command()
def init(ctx: typer.Context):
    """Initialize the genledger database."""
    try:
        _services(ctx)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def balance(ctx: typer.Context, account_id: str = typer.Argument(..., help="Account identifier")):
    """Print an account's current balance."""
    try:
        services = _services(ctx)
        console.print(f"{account_id}: [bold]{services.get_balance(account_id)}[/] credits")
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def grant(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    amount: int = typer.Argument(..., help="Credits to add"),
    reason: str = typer.Option("grant", "--reason", "-r", help="Journal reason"),
):
    """Add bonus credits to an account."""
    try:
        services = _services(ctx)
        new_balance = services.ledger.credit(account_id, amount, reason=reason)
        console.print(f"[green]✓[/] Granted {amount} to {account_id}, balance {new_balance}")
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def debit(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    amount: int = typer.Option(1, "--amount", "-a", help="Credits to debit"),
):
    """Debit credits if the balance covers them."""
    try:
        services = _services(ctx)
        result = services.try_debit(account_id, amount)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not result.ok:
        console.print(f"[yellow]Insufficient credits:[/] {account_id} has {result.balance}")
        sys.exit(EXIT_CODE_INSUFFICIENT)
    console.print(f"[green]✓[/] Debited {amount} from {account_id}, balance {result.balance}")


@app.command()
def refund(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    amount: int = typer.Option(1, "--amount", "-a", help="Credits to refund"),
):
    """Refund credits for a failed generation."""
    try:
        services = _services(ctx)
        new_balance = services.refund(account_id, amount)
        console.print(f"[green]✓[/] Refunded {amount} to {account_id}, balance {new_balance}")
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def reconcile(ctx: typer.Context, session_id: str = typer.Argument(..., help="Payment session id")):
    """Reconcile a payment session with the processor."""
    try:
        services = _services(ctx)
        result = services.reconcile_purchase(session_id)
    except ServerMisconfigured as e:
        console.print(f"[red]Server misconfigured:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except (GenLedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Session:[/bold] {session_id}")
    console.print(f"Payment status: {result.payment_status}")
    console.print(f"Result: {result.state.name}")
    console.print(f"Credits added: {result.credits_added}")
    if result.already_processed:
        console.print("[dim]Already processed earlier; nothing changed.[/]")


@app.command()
def history(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum entries to show"),
):
    """Show the ledger journal for an account."""
    try:
        services = _services(ctx)
        entries = services.ledger.history(account_id, limit=limit)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not entries:
        console.print(f"\n[dim]No ledger entries for {account_id}.[/]")
        return
    _display_entries(account_id, entries)


def _format_delta(delta: int) -> str:
    return f"{'+' if delta > 0 else ''}{delta}"


def _display_entries(account_id: str, entries: List[LedgerEntry]) -> None:
    table = Table(title=f"Ledger: {account_id}")
    table.add_column("Time")
    table.add_column("Reason")
    table.add_column("Delta", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Reference")
    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.reason,
            _format_delta(entry.delta),
            str(entry.balance_after),
            entry.reference or "",
        )
    console.print(table)


if __name__ == "__main__":
    app()
