"""CLI commands for RPM OS."""

import asyncio
import uuid
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console

from rpm_os.billing.errors import BillingError, InvalidPeriod, NotAuthorized
from rpm_os.config import get_settings

app = typer.Typer(
    name="rpm-os",
    help="RPM/CCM/PCM billing eligibility engine",
    add_completion=False,
)
console = Console()


def get_patient_builder():
    """Patient summary builder over the configured core database."""
    from rpm_os.billing.policy import BillingPolicy
    from rpm_os.billing.service import PatientBillingSummaryBuilder
    from rpm_os.core.database import get_session_factory
    from rpm_os.core.repository import (
        EnrollmentRepository,
        MeasurementRepository,
        TimeEntryRepository,
    )

    settings = get_settings()
    session_factory = get_session_factory()
    return PatientBillingSummaryBuilder(
        measurements=MeasurementRepository(session_factory),
        time_entries=TimeEntryRepository(session_factory),
        directory=EnrollmentRepository(session_factory),
        policy=BillingPolicy.from_settings(settings),
        read_attempts=settings.upstream_read_attempts,
        default_timezone=settings.default_clinic_timezone,
    )


def _parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Invalid {label}: {value}[/red]")
        raise typer.Exit(1)


def _run_billing(coro):
    try:
        return asyncio.run(coro)
    except NotAuthorized:
        console.print("[red]Not authorized[/red]")
        raise typer.Exit(1)
    except InvalidPeriod as e:
        console.print(f"[red]Invalid period: {e}[/red]")
        raise typer.Exit(2)
    except BillingError as e:
        console.print(f"[red]Billing computation failed: {e}[/red]")
        raise typer.Exit(1)


@app.command("patient-summary")
def patient_summary(
    clinician_id: str = typer.Argument(..., help="Requesting clinician ID"),
    patient_id: str = typer.Argument(..., help="Patient ID"),
    start: Optional[datetime] = typer.Option(None, "--from", help="Period start (default: start of month)"),
    end: Optional[datetime] = typer.Option(None, "--to", help="Period end, exclusive (default: now)"),
):
    """Print one patient's billing summary as JSON."""
    clinician = _parse_uuid(clinician_id, "clinician ID")
    patient = _parse_uuid(patient_id, "patient ID")

    builder = get_patient_builder()
    summary = _run_billing(builder.build(clinician, patient, start, end))
    console.print_json(summary.model_dump_json(by_alias=True))


@app.command("clinic-report")
def clinic_report(
    clinician_id: str = typer.Argument(..., help="Requesting clinician ID (OWNER or ADMIN)"),
    clinic_id: str = typer.Argument(..., help="Clinic ID"),
    start: Optional[datetime] = typer.Option(None, "--from", help="Period start (default: start of month)"),
    end: Optional[datetime] = typer.Option(None, "--to", help="Period end, exclusive (default: now)"),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Patients summarized concurrently"
    ),
):
    """Print a clinic-wide billing report as JSON."""
    from rpm_os.billing.service import ClinicBillingReportBuilder

    clinician = _parse_uuid(clinician_id, "clinician ID")
    clinic = _parse_uuid(clinic_id, "clinic ID")

    builder = ClinicBillingReportBuilder(
        get_patient_builder(),
        concurrency=concurrency or get_settings().billing_report_concurrency,
    )
    report = _run_billing(builder.build(clinician, clinic, start, end))
    console.print_json(report.model_dump_json(by_alias=True))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the REST API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print(f"Starting RPM OS billing API on {host}:{port}")
    uvicorn.run(
        "rpm_os.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command("init-db")
def init_db():
    """Create the core tables (development databases only)."""
    from rpm_os.core.database import init_db as create_tables

    asyncio.run(create_tables())
    console.print("[green]Core tables created[/green]")


@app.command()
def version():
    """Show version information."""
    from rpm_os import __version__

    console.print(f"RPM OS v{__version__}")
