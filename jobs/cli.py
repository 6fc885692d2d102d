"""
Scheduled billing jobs.

Run from cron with the admin database role, so every owner's invoices are
swept. Each sweep command exits 1 when any item errored.

    invoice-desk check-overdue
    invoice-desk send-reminders --tier all
    invoice-desk recurring-run --limit 500
    invoice-desk reconcile-totals
    invoice-desk refresh-rates --base EUR
"""

import logging

import typer
from rich.console import Console
from rich.table import Table

from clients.rates_client import ExchangeRateError
from core.container import build_services
from core.models import SweepOutcome, SweepResult

app = typer.Typer(
    name="invoice-desk",
    help="Billing automation jobs",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
logger = logging.getLogger(__name__)

_REMINDER_TIERS = ("due_soon", "overdue", "follow_up", "all")

_OUTCOME_STYLES = {
    SweepOutcome.PROCESSED: "green",
    SweepOutcome.SKIPPED: "yellow",
    SweepOutcome.ERROR: "red",
}


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
):
    """Billing automation jobs."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _services():
    return build_services(admin=True)


def _print_result(title: str, result: SweepResult, verbose: bool) -> None:
    console.print(
        f"[bold]{title}[/bold]: "
        f"[green]{result.processed} processed[/green], "
        f"[yellow]{result.skipped} skipped[/yellow], "
        f"[red]{result.errors} errors[/red]"
    )
    if not verbose or not result.details:
        return

    table = Table(title=title)
    table.add_column("Entity", style="cyan")
    table.add_column("Outcome")
    table.add_column("Reason / detail", style="white")
    for item in result.details:
        style = _OUTCOME_STYLES[item.outcome]
        info = item.reason or ", ".join(f"{k}={v}" for k, v in item.detail.items())
        table.add_row(str(item.entity_id), f"[{style}]{item.outcome.value}[/{style}]", info)
    console.print(table)


def _exit_on_errors(*results: SweepResult) -> None:
    if any(r.errors for r in results):
        raise typer.Exit(1)


@app.command("check-overdue")
def check_overdue(
    limit: int | None = typer.Option(None, "--limit", help="Stop after this many invoices"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every item"),
):
    """Mark sent invoices past their due date as overdue."""
    services = _services()
    result = services.overdue.process_overdue_invoices(limit=limit)
    _print_result("Overdue invoices", result, verbose)
    _exit_on_errors(result)


@app.command("send-reminders")
def send_reminders(
    tier: str = typer.Option("all", "--tier", "-t", help="due_soon, overdue, follow_up or all"),
    limit: int | None = typer.Option(None, "--limit", help="Stop each tier after this many invoices"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every item"),
):
    """Record payment reminders that are due."""
    if tier not in _REMINDER_TIERS:
        console.print(f"[red]Unknown tier: {tier}. Use one of {', '.join(_REMINDER_TIERS)}[/red]")
        raise typer.Exit(2)

    services = _services()
    runners = {
        "due_soon": services.reminders.process_due_soon_reminders,
        "overdue": services.reminders.process_overdue_reminders,
        "follow_up": services.reminders.process_follow_up_reminders,
    }
    selected = runners if tier == "all" else {tier: runners[tier]}

    results = []
    for name, run in selected.items():
        result = run(limit=limit)
        _print_result(f"{name.replace('_', ' ').capitalize()} reminders", result, verbose)
        results.append(result)
    _exit_on_errors(*results)


@app.command("recurring-run")
def recurring_run(
    limit: int | None = typer.Option(None, "--limit", help="Stop after this many templates"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every item"),
):
    """Generate invoices from recurring templates that are due."""
    services = _services()
    result = services.recurring.generate_due_invoices(limit=limit)
    _print_result("Recurring invoices", result, verbose)
    _exit_on_errors(result)


@app.command("reconcile-totals")
def reconcile_totals(
    limit: int | None = typer.Option(None, "--limit", help="Stop after this many invoices"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every item"),
):
    """Recompute stored invoice totals that drifted from their items."""
    services = _services()
    result = services.invoices.reconcile_totals(limit=limit)
    _print_result("Reconciled totals", result, verbose)
    _exit_on_errors(result)


@app.command("refresh-rates")
def refresh_rates(
    base: str | None = typer.Option(None, "--base", "-b", help="Base currency (defaults to the configured one)"),
):
    """Fetch the latest exchange rates and store them for today."""
    services = _services()
    try:
        stored = services.currency.refresh_rates(base)
    except (ExchangeRateError, ValueError) as e:
        console.print(f"[red]Rate refresh failed: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[green]Stored {stored} exchange rates[/green]")


if __name__ == "__main__":
    app()
