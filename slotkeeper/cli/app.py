"""
Main CLI application using Typer.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Optional, Annotated

import pendulum
import typer
from rich.console import Console
from rich.table import Table

from ..adapters.sql_store import (
    SqlAppointmentStore,
    SqlScheduleRepository,
    SqlServiceCatalog,
    create_store_engine,
    init_schema,
)
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import BookingError
from ..domain.models import AppointmentStatus, CustomerRef
from ..logging_setup import configure_logging
from ..services.engine import BookingEngine

app = typer.Typer(
    name="slotkeeper",
    help="Publish working hours and book appointments without double-booking",
    add_completion=False
)

console = Console()
logger = logging.getLogger(__name__)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]


def _load_config(config_file: Optional[Path]) -> AppConfig:
    try:
        config = AppConfig.load_from_yaml(config_file or get_default_config_path())
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    configure_logging(config.log_level)
    return config


def _build_engine(config: AppConfig) -> BookingEngine:
    """
    Open the configured database, create missing tables and sync the
    schedules and services declared in the config file.
    """
    db = config.database
    engine = create_store_engine(db.url, echo=db.echo, busy_timeout=db.busy_timeout_seconds)
    init_schema(engine)

    retry = {"max_retries": db.max_retries, "retry_backoff_seconds": db.retry_backoff_seconds}
    schedules = SqlScheduleRepository(engine, **retry)
    services = SqlServiceCatalog(engine, **retry)
    appointments = SqlAppointmentStore(engine, **retry)

    for provider in config.providers:
        schedules.save(provider.id, config.schedule_for(provider))
    for service in config.services:
        services.save(service.to_service())
    logger.debug(
        "Synced %d provider(s) and %d service(s)", len(config.providers), len(config.services)
    )

    return BookingEngine(schedules, services, appointments)


def _resolve_provider(config: AppConfig, identifier: str) -> str:
    provider = config.find_provider(identifier)
    return provider.id if provider else identifier


def _parse_date(value: Optional[str], tz: str) -> date:
    if not value:
        return pendulum.now(tz).date()
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except ValueError as e:
        console.print(f"[red]Could not parse date {value!r}: {e}[/red]")
        raise typer.Exit(1)


def _provider_timezone(engine: BookingEngine, provider_id: str, fallback: str) -> str:
    schedule = engine.schedules.get(provider_id)
    return schedule.timezone if schedule else fallback


@app.command()
def init_db(config_file: ConfigOption = None):
    """
    Create the database schema and load providers and services from the config.
    """
    config = _load_config(config_file)
    try:
        _build_engine(config)
    except BookingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    console.print(
        f"\n[green]✓ Database ready[/green] ({len(config.providers)} provider(s), "
        f"{len(config.services)} service(s))\n"
    )


@app.command()
def services(
    config_file: ConfigOption = None,
    all_services: Annotated[bool, typer.Option("--all", help="Include inactive services")] = False,
):
    """
    List the service catalog.
    """
    config = _load_config(config_file)
    try:
        engine = _build_engine(config)
        catalog = engine.services.list(include_inactive=all_services)
    except BookingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if not catalog:
        console.print("[yellow]No services configured.[/yellow]")
        return

    table = Table(title="Services", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="bold yellow")
    table.add_column("Name")
    table.add_column("Duration", justify="right")
    table.add_column("Price", justify="right", style="dim")
    table.add_column("Active")

    for service in catalog:
        table.add_row(
            service.id,
            service.name,
            f"{service.duration_minutes} min",
            "-" if service.price is None else f"{service.price:g}",
            "yes" if service.is_active else "no",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def slots(
    provider: Annotated[str, typer.Argument(help="Provider id or name")],
    service: Annotated[str, typer.Argument(help="Service id")],
    day: Annotated[Optional[str], typer.Option("--date", "-d", help="Date (YYYY-MM-DD), default today")] = None,
    free_only: Annotated[bool, typer.Option("--free", help="Only show free slots")] = False,
    config_file: ConfigOption = None,
):
    """
    Show the bookable slots of a provider for one day.

    Examples:

        slotkeeper slots ahmet haircut --date 2024-11-26
    """
    config = _load_config(config_file)
    try:
        engine = _build_engine(config)
        provider_id = _resolve_provider(config, provider)
        tz = _provider_timezone(engine, provider_id, config.timezone)
        query_date = _parse_date(day, tz)
        result = engine.get_available_slots(provider_id, query_date, service)
    except BookingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    shown = [slot for slot in result if slot.is_available or not free_only]
    console.print()
    if not shown:
        console.print(
            f"[yellow]⚠ No slots on {query_date.isoformat()}.[/yellow]\n"
            "The provider may be off that day, or fully booked."
        )
        console.print()
        return

    free = sum(1 for slot in result if slot.is_available)
    console.print(f"[bold green]✓ {free} free slot(s) on {query_date.isoformat()}:[/bold green]\n")
    for slot in shown:
        style = "green" if slot.is_available else "dim"
        console.print(f"  [{style}]{slot.format_display()}[/{style}]")
    console.print()


@app.command()
def book(
    provider: Annotated[str, typer.Argument(help="Provider id or name")],
    service: Annotated[str, typer.Argument(help="Service id")],
    day: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    start: Annotated[str, typer.Argument(help="Start time (HH:mm)")],
    name: Annotated[Optional[str], typer.Option("--name", help="Customer name")] = None,
    phone: Annotated[Optional[str], typer.Option("--phone", help="Customer phone")] = None,
    customer_id: Annotated[Optional[str], typer.Option("--customer-id", help="Registered customer id")] = None,
    confirmed: Annotated[bool, typer.Option("--confirmed", help="Provider-entered booking, confirmed immediately")] = False,
    key: Annotated[Optional[str], typer.Option("--key", help="Idempotency key for safe retries")] = None,
    config_file: ConfigOption = None,
):
    """
    Book an appointment.
    """
    config = _load_config(config_file)
    try:
        engine = _build_engine(config)
        provider_id = _resolve_provider(config, provider)
        tz = _provider_timezone(engine, provider_id, config.timezone)
        try:
            starts_at = pendulum.from_format(f"{day} {start}", "YYYY-MM-DD HH:mm", tz=tz)
        except ValueError as e:
            console.print(f"[red]Could not parse start {day} {start}: {e}[/red]")
            raise typer.Exit(1)

        appointment = engine.create_appointment(
            provider_id,
            service,
            starts_at,
            CustomerRef(customer_id=customer_id, name=name, phone=phone),
            status=AppointmentStatus.CONFIRMED if confirmed else AppointmentStatus.PENDING,
            idempotency_key=key,
        )
    except BookingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(
        f"\n[green]✓ Booked[/green] {appointment.id}\n"
        f"   {appointment.time_range} ({appointment.status.value})\n"
    )


@app.command()
def status(
    appointment_id: Annotated[str, typer.Argument(help="Appointment id")],
    new_status: Annotated[str, typer.Argument(help="confirmed, completed or cancelled")],
    config_file: ConfigOption = None,
):
    """
    Change the status of an appointment.
    """
    config = _load_config(config_file)
    try:
        engine = _build_engine(config)
        appointment = engine.update_appointment_status(appointment_id, new_status)
    except BookingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"\n[green]✓ {appointment.id} is now {appointment.status.value}[/green]\n")


@app.command()
def agenda(
    provider: Annotated[str, typer.Argument(help="Provider id or name")],
    from_date: Annotated[Optional[str], typer.Option("--from", help="First day (YYYY-MM-DD), default today")] = None,
    days: Annotated[int, typer.Option("--days", help="Number of days to show")] = 7,
    config_file: ConfigOption = None,
):
    """
    List a provider's appointments.
    """
    config = _load_config(config_file)
    try:
        engine = _build_engine(config)
        provider_id = _resolve_provider(config, provider)
        tz = _provider_timezone(engine, provider_id, config.timezone)
        first_day = _parse_date(from_date, tz)
        appointments = engine.list_appointments(provider_id, first_day, days=days)
    except BookingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if not appointments:
        console.print("[yellow]No appointments.[/yellow]")
        return

    table = Table(title=f"Appointments - {provider_id}", show_header=True, header_style="bold cyan")
    table.add_column("When", style="bold")
    table.add_column("Customer")
    table.add_column("Phone", style="dim")
    table.add_column("Service")
    table.add_column("Status")
    table.add_column("Id", style="dim")

    for appointment in appointments:
        local = appointment.starts_at.in_timezone(tz)
        table.add_row(
            f"{local.format('DD.MM.YYYY HH:mm')}-{appointment.ends_at.in_timezone(tz).format('HH:mm')}",
            appointment.customer.display_name(),
            appointment.customer.phone or "-",
            appointment.service_id,
            appointment.status.value,
            appointment.id,
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotkeeper[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
