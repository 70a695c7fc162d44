"""Tests for patient and clinic billing summary builders."""

import asyncio
import uuid
from datetime import datetime, timezone

import pytest

from rpm_os.billing.errors import (
    InvalidPeriod,
    NotAuthorized,
    PatientComputationFailure,
    UpstreamReadFailure,
)
from rpm_os.billing.models import (
    ActivityType,
    BillingProgram,
    MembershipRole,
    PartialFailurePolicy,
    PerformerType,
)
from rpm_os.billing.service import ClinicBillingReportBuilder, PatientBillingSummaryBuilder
from tests.conftest import (
    CLINIC_ID,
    CLINICIAN_ID,
    PATIENT_ID,
    FakeDirectory,
    FakeMeasurementStore,
    FakeTimeEntryStore,
    device_days,
    enrollment,
    fixed_now,
    time_entry,
)

PATIENT_B = uuid.UUID("aaaaaaaa-0000-0000-0000-00000000000b")
PATIENT_C = uuid.UUID("aaaaaaaa-0000-0000-0000-00000000000c")


def _builder(measurements=None, entries=None, directory=None, read_attempts=3, time_store=None):
    return PatientBillingSummaryBuilder(
        measurements=measurements or FakeMeasurementStore(),
        time_entries=time_store or FakeTimeEntryStore(entries),
        directory=directory or FakeDirectory([enrollment()]),
        read_attempts=read_attempts,
        now=fixed_now,
    )


@pytest.fixture
def scenario_builder():
    """Patient with 18 device days, 20 min staff care planning and 25 min review."""
    return _builder(
        FakeMeasurementStore(device_days(18)),
        [
            time_entry(20, ActivityType.CARE_PLAN_UPDATE, PerformerType.CLINICAL_STAFF),
            time_entry(25, ActivityType.PATIENT_REVIEW),
        ],
    )


class TestPatientBillingSummary:
    async def test_month_to_date_summary(self, scenario_builder):
        summary = await scenario_builder.build(CLINICIAN_ID, PATIENT_ID)

        assert summary.patient_name == "Jane Doe"
        assert summary.period.start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert summary.period.end == fixed_now()
        assert summary.device_transmission.total_days == 18
        assert summary.time.total_minutes == 45
        assert summary.initial_setup.eligible_99453
        assert not summary.initial_setup.already_billed
        assert summary.eligible_codes == ["99453", "99454", "99457", "99490"]

    async def test_serializes_with_camel_case(self, scenario_builder):
        summary = await scenario_builder.build(CLINICIAN_ID, PATIENT_ID)
        data = summary.model_dump(mode="json", by_alias=True)

        assert data["deviceTransmission"]["eligible99454"] is True
        assert data["time"]["eligible99458Count"] == 0
        assert data["time"]["ccmClinicalStaffMinutes"] == 20
        assert data["period"]["from"] == "2026-03-01T00:00:00Z"
        assert "eligibleCodes" in data

    async def test_idempotent(self, scenario_builder):
        first = await scenario_builder.build(CLINICIAN_ID, PATIENT_ID)
        second = await scenario_builder.build(CLINICIAN_ID, PATIENT_ID)
        assert first.model_dump_json(by_alias=True) == second.model_dump_json(by_alias=True)

    async def test_no_enrollment_is_not_authorized(self, scenario_builder):
        other_clinician = uuid.uuid4()
        with pytest.raises(NotAuthorized) as exc_info:
            await scenario_builder.build(other_clinician, PATIENT_ID)
        assert str(exc_info.value) == "Not authorized"

    async def test_unknown_patient_is_indistinguishable(self, scenario_builder):
        with pytest.raises(NotAuthorized) as exc_info:
            await scenario_builder.build(CLINICIAN_ID, uuid.uuid4())
        assert str(exc_info.value) == "Not authorized"

    async def test_invalid_period(self, scenario_builder):
        with pytest.raises(InvalidPeriod):
            await scenario_builder.build(
                CLINICIAN_ID,
                PATIENT_ID,
                datetime(2026, 3, 10, tzinfo=timezone.utc),
                datetime(2026, 3, 1, tzinfo=timezone.utc),
            )

    async def test_initial_setup_already_billed(self):
        billed_at = datetime(2026, 1, 31, tzinfo=timezone.utc)
        builder = _builder(
            FakeMeasurementStore(device_days(18)),
            directory=FakeDirectory([enrollment(setup_billed_at=billed_at)]),
        )
        summary = await builder.build(CLINICIAN_ID, PATIENT_ID)
        assert "99453" not in summary.eligible_codes
        assert summary.initial_setup.already_billed
        assert summary.initial_setup.billed_at == billed_at

    async def test_pcm_program(self):
        builder = _builder(
            entries=[time_entry(45, ActivityType.COORDINATION, PerformerType.PHYSICIAN_QHP)],
            directory=FakeDirectory([enrollment(program=BillingProgram.RPM_PCM)]),
        )
        summary = await builder.build(CLINICIAN_ID, PATIENT_ID)
        assert summary.billing_program == BillingProgram.RPM_PCM
        assert summary.eligible_codes == ["99424"]

    async def test_clinic_timezone_applies(self):
        builder = _builder(
            FakeMeasurementStore(device_days(1)),
            directory=FakeDirectory([enrollment()], tz="America/New_York"),
        )
        summary = await builder.build(CLINICIAN_ID, PATIENT_ID)
        assert summary.period.start == datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc)
        # Noon UTC on March 1 is 07:00 local, inside the period
        assert summary.device_transmission.dates == ["2026-03-01"]

    async def test_transient_read_failure_is_retried(self):
        store = FakeMeasurementStore(device_days(16), failures=1)
        summary = await _builder(store).build(CLINICIAN_ID, PATIENT_ID)
        assert summary.device_transmission.eligible_99454
        assert store.calls == 2

    async def test_persistent_read_failure_surfaces(self):
        store = FakeMeasurementStore(device_days(16), failures=5)
        with pytest.raises(UpstreamReadFailure):
            await _builder(store, read_attempts=2).build(CLINICIAN_ID, PATIENT_ID)
        assert store.calls == 2

    async def test_invalid_billing_program_is_a_computation_failure(self):
        builder = _builder(directory=FakeDirectory([enrollment(program="RPM_XYZ")]))
        with pytest.raises(PatientComputationFailure) as exc_info:
            await builder.build(CLINICIAN_ID, PATIENT_ID)
        assert "invalid billing program" in exc_info.value.reason

    async def test_unknown_clinic_timezone_falls_back_to_default(self):
        builder = _builder(
            FakeMeasurementStore(device_days(2)),
            directory=FakeDirectory([enrollment()], tz="Not/A_Zone"),
        )
        summary = await builder.build(CLINICIAN_ID, PATIENT_ID)
        # Default clinic zone is America/New_York
        assert summary.period.start == datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc)
        assert summary.device_transmission.total_days == 2


def _clinic_builder(role=MembershipRole.OWNER, failure_policy=None):
    directory = FakeDirectory(
        [
            enrollment(PATIENT_ID, "Alice Adams"),
            enrollment(PATIENT_B, "Bob Brown"),
            enrollment(PATIENT_C, "Carol Chen"),
        ],
        role=role,
    )
    measurements = FakeMeasurementStore(device_days(18) + device_days(5, patient_id=PATIENT_C))
    entries = [
        time_entry(20, ActivityType.CARE_PLAN_UPDATE),
        time_entry(25),
        # Anomalous record for patient B
        time_entry(0, patient_id=PATIENT_B),
        time_entry(12, patient_id=PATIENT_C),
    ]
    patient_builder = _builder(measurements, entries, directory)
    return ClinicBillingReportBuilder(patient_builder, concurrency=2, failure_policy=failure_policy)


class TestClinicBillingReport:
    async def test_bad_patient_is_flagged_not_fatal(self):
        report = await _clinic_builder().build(CLINICIAN_ID, CLINIC_ID)

        assert report.clinic_name == "Sunrise Cardiology"
        assert [p.patient_name for p in report.patients] == ["Alice Adams", "Carol Chen"]
        assert len(report.flagged_patients) == 1
        flagged = report.flagged_patients[0]
        assert flagged.patient_id == PATIENT_B
        assert "non-positive duration" in flagged.reason

    async def test_totals(self):
        report = await _clinic_builder().build(CLINICIAN_ID, CLINIC_ID)
        totals = report.totals

        assert totals.total_patients == 2
        assert totals.flagged_patients == 1
        assert totals.patients_with_device_data == 2
        assert totals.patients_eligible_by_code["99454"] == 1
        assert totals.patients_eligible_by_code["99445"] == 1
        assert totals.patients_eligible_by_code["99470"] == 1
        assert totals.patients_eligible_by_code["99491"] == 0
        assert totals.total_rpm_minutes == 37
        assert totals.total_ccm_minutes == 20
        assert totals.total_ccm_clinical_staff_minutes == 20
        assert totals.total_ccm_physician_minutes == 0

    async def test_every_patient_shares_the_period(self):
        report = await _clinic_builder().build(CLINICIAN_ID, CLINIC_ID)
        assert all(p.period == report.period for p in report.patients)

    async def test_abort_policy_propagates(self):
        builder = _clinic_builder(failure_policy=PartialFailurePolicy.ABORT)
        with pytest.raises(PatientComputationFailure) as exc_info:
            await builder.build(CLINICIAN_ID, CLINIC_ID)
        assert exc_info.value.patient_id == str(PATIENT_B)

    async def test_clinician_role_is_not_authorized(self):
        with pytest.raises(NotAuthorized):
            await _clinic_builder(role=MembershipRole.CLINICIAN).build(CLINICIAN_ID, CLINIC_ID)

    async def test_admin_role_is_authorized(self):
        report = await _clinic_builder(role=MembershipRole.ADMIN).build(CLINICIAN_ID, CLINIC_ID)
        assert report.totals.total_patients == 2

    async def test_non_member_is_not_authorized(self):
        with pytest.raises(NotAuthorized):
            await _clinic_builder(role=None).build(CLINICIAN_ID, CLINIC_ID)

    async def test_unknown_clinic_is_not_authorized(self):
        with pytest.raises(NotAuthorized):
            await _clinic_builder().build(CLINICIAN_ID, uuid.uuid4())

    async def test_idempotent(self):
        builder = _clinic_builder()
        first = await builder.build(CLINICIAN_ID, CLINIC_ID)
        second = await builder.build(CLINICIAN_ID, CLINIC_ID)
        assert first.model_dump_json(by_alias=True) == second.model_dump_json(by_alias=True)

    async def test_empty_clinic(self):
        patient_builder = _builder(directory=FakeDirectory([]))
        report = await ClinicBillingReportBuilder(patient_builder).build(CLINICIAN_ID, CLINIC_ID)
        assert report.patients == []
        assert report.totals.total_patients == 0
        assert set(report.totals.patients_eligible_by_code) >= {"99454", "99457", "99490"}

    async def test_invalid_billing_program_is_flagged(self):
        directory = FakeDirectory([
            enrollment(PATIENT_ID, "Alice Adams"),
            enrollment(PATIENT_B, "Bob Brown", program="RPM_XYZ"),
            enrollment(PATIENT_C, "Carol Chen"),
        ])
        patient_builder = _builder(FakeMeasurementStore(device_days(18)), [time_entry(25)], directory)
        report = await ClinicBillingReportBuilder(patient_builder).build(CLINICIAN_ID, CLINIC_ID)

        assert [p.patient_name for p in report.patients] == ["Alice Adams", "Carol Chen"]
        assert [f.patient_id for f in report.flagged_patients] == [PATIENT_B]
        assert "invalid billing program" in report.flagged_patients[0].reason

    async def test_unreachable_patient_store_is_flagged(self):
        directory = FakeDirectory([
            enrollment(PATIENT_ID, "Alice Adams"),
            enrollment(PATIENT_B, "Bob Brown"),
            enrollment(PATIENT_C, "Carol Chen"),
        ])
        measurements = FakeMeasurementStore(device_days(18), unreachable_for={PATIENT_B})
        patient_builder = _builder(measurements, [time_entry(25)], directory, read_attempts=2)
        report = await ClinicBillingReportBuilder(patient_builder).build(CLINICIAN_ID, CLINIC_ID)

        assert [p.patient_name for p in report.patients] == ["Alice Adams", "Carol Chen"]
        assert len(report.flagged_patients) == 1
        assert report.flagged_patients[0].patient_id == PATIENT_B
        assert "measurements read failed" in report.flagged_patients[0].reason
        assert report.totals.flagged_patients == 1

    async def test_abort_cancels_remaining_patients(self):
        directory = FakeDirectory([
            enrollment(PATIENT_ID, "Alice Adams"),
            enrollment(PATIENT_B, "Bob Brown"),
            enrollment(PATIENT_C, "Carol Chen"),
        ])
        time_store = FakeTimeEntryStore(
            [time_entry(0, patient_id=PATIENT_B)],
            delay=0.2,
            slow_for={PATIENT_ID, PATIENT_C},
        )
        patient_builder = _builder(directory=directory, time_store=time_store)
        builder = ClinicBillingReportBuilder(
            patient_builder, concurrency=3, failure_policy=PartialFailurePolicy.ABORT
        )

        with pytest.raises(PatientComputationFailure):
            await builder.build(CLINICIAN_ID, CLINIC_ID)
        assert time_store.completed == []

        await asyncio.sleep(0.3)
        assert time_store.completed == []

    async def test_unknown_clinic_timezone_falls_back_to_default(self):
        patient_builder = _builder(directory=FakeDirectory([enrollment()], tz="Not/A_Zone"))
        report = await ClinicBillingReportBuilder(patient_builder).build(CLINICIAN_ID, CLINIC_ID)
        assert report.timezone == "America/New_York"
        assert report.period.start == datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc)
