"""Helpers shared by the CLI subcommands."""

from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from ..config import Settings, build_service, load_config
from ..currency import Currency
from ..service import CommitResult, PortfolioService
from rich.console import Console

console = Console()

_SYMBOLS = {Currency.KRW: "₩", Currency.USD: "$", Currency.EUR: "€", Currency.GBP: "£", Currency.JPY: "¥"}


def load_settings(args) -> Settings:
    """Resolve settings from --config/--data-dir plus the environment."""
    settings = load_config(getattr(args, "config", None))
    data_dir = getattr(args, "data_dir", None)
    if data_dir:
        settings.data_dir = Path(data_dir).expanduser()
    return settings


async def open_service(args) -> PortfolioService:
    """Build the service from settings and load persisted state."""
    service = build_service(load_settings(args))
    await service.load()
    return service


def format_money(amount: Decimal, currency: Currency) -> str:
    # KRW and JPY have no minor unit in practice.
    places = 0 if currency in (Currency.KRW, Currency.JPY, Currency.VND) else 2
    prefix = _SYMBOLS.get(currency)
    if prefix:
        return f"{prefix}{amount:,.{places}f}"
    return f"{amount:,.{places}f} {currency.value}"


def format_percent(value: Decimal | None) -> str:
    if value is None:
        return "N/A"
    if value >= 0:
        return f"[green]+{value:.2f}%[/green]"
    return f"[red]{value:.2f}%[/red]"


async def report_commit(result: CommitResult) -> None:
    """Print warnings and the mirror status of a committed command."""
    for message in result.warnings:
        console.print(f"[yellow]Warning: {message}[/yellow]")
    mirror_results = await result.wait_for_mirror()
    failures = [r.error for r in mirror_results if not r.ok]
    if failures:
        console.print(f"[yellow]Saved locally; mirror sync failed: {failures[0]}[/yellow]")
