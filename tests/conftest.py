"""Pytest configuration and fixtures."""

import asyncio
import uuid
from datetime import date, datetime, timezone
from typing import Optional

import pytest

from rpm_os.billing.errors import UpstreamReadFailure
from rpm_os.billing.models import (
    ActivityType,
    BillingPeriod,
    BillingProgram,
    ClinicRecord,
    EnrollmentRecord,
    MeasurementRecord,
    MembershipRecord,
    MembershipRole,
    MembershipStatus,
    PerformerType,
    TimeEntryRecord,
)

CLINICIAN_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
CLINIC_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
PATIENT_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")

UTC_TZ = "UTC"
NY_TZ = "America/New_York"


# ---------------------------------------------------------------------------
# Auth override for tests: bypass get_current_clinician dependency
# ---------------------------------------------------------------------------

class _MockClinician:
    """Lightweight stand-in for the Clinician ORM model used in tests."""

    def __init__(self, clinician_id: uuid.UUID = CLINICIAN_ID):
        self.id = clinician_id
        self.name = "Test Clinician"
        self.email = "test@example.com"
        self.active = True


def _fake_current_clinician():
    return _MockClinician()


def apply_auth_override(app):
    """Apply get_current_clinician override to a FastAPI test app."""
    from rpm_os.api.dependencies import get_current_clinician
    app.dependency_overrides[get_current_clinician] = _fake_current_clinician
    return app


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

def device_reading(ts: datetime, patient_id: uuid.UUID = PATIENT_ID, source: str = "omron") -> MeasurementRecord:
    return MeasurementRecord(patient_id=patient_id, timestamp=ts, source=source)


def device_days(count: int, patient_id: uuid.UUID = PATIENT_ID, month: int = 3) -> list[MeasurementRecord]:
    """One device reading at noon UTC on each of the first ``count`` days of the month."""
    return [
        device_reading(datetime(2026, month, day, 12, 0, tzinfo=timezone.utc), patient_id)
        for day in range(1, count + 1)
    ]


def time_entry(
    minutes: int,
    activity: ActivityType = ActivityType.PATIENT_REVIEW,
    performer: PerformerType = PerformerType.CLINICAL_STAFF,
    entry_date: date = date(2026, 3, 10),
    patient_id: uuid.UUID = PATIENT_ID,
) -> TimeEntryRecord:
    return TimeEntryRecord(
        patient_id=patient_id,
        clinic_id=CLINIC_ID,
        entry_date=entry_date,
        duration_minutes=minutes,
        activity=activity,
        performer_type=performer,
    )


def enrollment(
    patient_id: uuid.UUID = PATIENT_ID,
    name: str = "Jane Doe",
    program: BillingProgram = BillingProgram.RPM_CCM,
    setup_billed_at: Optional[datetime] = None,
) -> EnrollmentRecord:
    return EnrollmentRecord(
        enrollment_id=uuid.uuid4(),
        patient_id=patient_id,
        patient_name=name,
        clinician_id=CLINICIAN_ID,
        clinic_id=CLINIC_ID,
        billing_program=program,
        initial_setup_billed_at=setup_billed_at,
    )


def march_period() -> BillingPeriod:
    return BillingPeriod(
        start=datetime(2026, 3, 1, tzinfo=timezone.utc),
        end=datetime(2026, 4, 1, tzinfo=timezone.utc),
    )


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------

class FakeMeasurementStore:
    def __init__(self, measurements=None, failures: int = 0, unreachable_for=()):
        self.measurements: list[MeasurementRecord] = list(measurements or [])
        self.failures = failures
        self.unreachable_for = set(unreachable_for)
        self.calls = 0

    async def list_device_measurements(self, patient_id, start, end):
        self.calls += 1
        if patient_id in self.unreachable_for:
            raise UpstreamReadFailure("measurements", "connection reset")
        if self.failures:
            self.failures -= 1
            raise UpstreamReadFailure("measurements", "connection reset")
        return [
            m for m in self.measurements
            if m.patient_id == patient_id and m.is_device and start <= m.timestamp < end
        ]


class FakeTimeEntryStore:
    def __init__(self, entries=None, delay: float = 0.0, slow_for=()):
        self.entries: list[TimeEntryRecord] = list(entries or [])
        self.delay = delay
        self.slow_for = set(slow_for)
        self.completed: list[uuid.UUID] = []

    async def list_entries(self, patient_id, first_date, end_date):
        if patient_id in self.slow_for:
            await asyncio.sleep(self.delay)
            self.completed.append(patient_id)
        return [
            e for e in self.entries
            if e.patient_id == patient_id and first_date <= e.entry_date < end_date
        ]


class FakeDirectory:
    def __init__(self, enrollments=None, role: Optional[MembershipRole] = MembershipRole.OWNER, tz: str = UTC_TZ):
        self.enrollments: list[EnrollmentRecord] = list(enrollments or [])
        self.role = role
        self.tz = tz

    async def get_active_enrollment(self, clinician_id, patient_id):
        for e in self.enrollments:
            if e.clinician_id == clinician_id and e.patient_id == patient_id:
                return e
        return None

    async def get_membership(self, clinician_id, clinic_id):
        if self.role is None or clinic_id != CLINIC_ID:
            return None
        return MembershipRecord(
            clinic_id=clinic_id,
            clinician_id=clinician_id,
            role=self.role,
            status=MembershipStatus.ACTIVE,
        )

    async def get_clinic(self, clinic_id):
        if clinic_id != CLINIC_ID:
            return None
        return ClinicRecord(id=CLINIC_ID, name="Sunrise Cardiology", timezone=self.tz)

    async def list_active_enrollments(self, clinic_id):
        return [e for e in self.enrollments if e.clinic_id == clinic_id]


def fixed_now() -> datetime:
    return datetime(2026, 3, 20, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_current_clinician():
    """Return a mock clinician for auth bypass."""
    return _MockClinician()
