"""Patient and clinic billing summaries.

Composes period resolution, device-day counting and time aggregation into a
per-patient summary, and rolls those up for a clinic. Nothing is cached or
written: every call reflects the current contents of the source stores.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError

from rpm_os.billing.device_days import DeviceTransmissionCounter
from rpm_os.billing.eligibility import BILLABLE_CODES, EligibilityContext, evaluate_eligibility
from rpm_os.billing.errors import (
    BillingError,
    InvalidPeriod,
    NotAuthorized,
    PatientComputationFailure,
)
from rpm_os.billing.models import (
    BillingPeriod,
    BillingProgram,
    ClinicBillingReport,
    ClinicBillingTotals,
    EnrollmentRecord,
    FlaggedPatient,
    InitialSetupSummary,
    PartialFailurePolicy,
    PatientBillingSummary,
)
from rpm_os.billing.period import load_timezone, resolve_period
from rpm_os.billing.policy import DEFAULT_POLICY, BillingPolicy
from rpm_os.billing.stores import (
    EnrollmentDirectory,
    MeasurementStore,
    TimeEntryStore,
    read_with_retry,
)
from rpm_os.billing.time_aggregation import TimeAggregator

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_together(*coros: Awaitable[T]) -> list[T]:
    """Run coroutines concurrently and return their results in order.

    The first failure cancels the others and is raised unwrapped.
    """
    try:
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(c) for c in coros]
    except BaseExceptionGroup as eg:
        raise eg.exceptions[0]
    return [t.result() for t in tasks]


class PatientBillingSummaryBuilder:
    """Builds a single patient's billing summary for an enrolled clinician."""

    def __init__(
        self,
        measurements: MeasurementStore,
        time_entries: TimeEntryStore,
        directory: EnrollmentDirectory,
        policy: BillingPolicy = DEFAULT_POLICY,
        read_attempts: int = 3,
        default_timezone: str = "America/New_York",
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.directory = directory
        self.policy = policy
        self.read_attempts = read_attempts
        self.default_timezone = default_timezone
        self.now = now
        self.device_counter = DeviceTransmissionCounter(measurements, policy, read_attempts)
        self.time_aggregator = TimeAggregator(time_entries, policy, read_attempts)

    async def clinic_timezone(self, clinic_id: uuid.UUID) -> str:
        clinic = await read_with_retry(
            lambda: self.directory.get_clinic(clinic_id), attempts=self.read_attempts
        )
        return self.usable_timezone(clinic.timezone if clinic else None)

    def usable_timezone(self, tz_name: Optional[str]) -> str:
        """The clinic's zone, or the default when it is unset or not a known IANA name."""
        if not tz_name:
            return self.default_timezone
        try:
            load_timezone(tz_name)
        except InvalidPeriod:
            logger.warning(
                "Clinic timezone %r is not a known IANA zone, using %s",
                tz_name,
                self.default_timezone,
            )
            return self.default_timezone
        return tz_name

    async def build(
        self,
        clinician_id: uuid.UUID,
        patient_id: uuid.UUID,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PatientBillingSummary:
        """Summarize ``patient_id`` for a clinician actively enrolled with them.

        Raises:
            NotAuthorized: no active enrollment between caller and patient.
            InvalidPeriod: the requested window is empty or inverted.
            UpstreamReadFailure: a store stayed unreachable after retries.
        """
        enrollment = await read_with_retry(
            lambda: self.directory.get_active_enrollment(clinician_id, patient_id),
            attempts=self.read_attempts,
        )
        if enrollment is None:
            logger.info(
                "Billing summary denied: clinician=%s patient=%s", clinician_id, patient_id
            )
            raise NotAuthorized()

        tz_name = await self.clinic_timezone(enrollment.clinic_id)
        period = resolve_period(start, end, tz_name, now=self.now)
        return await self.summarize(enrollment, period, tz_name)

    async def summarize(
        self, enrollment: EnrollmentRecord, period: BillingPeriod, tz_name: str
    ) -> PatientBillingSummary:
        """Compute the summary for an already-authorized enrollment."""
        patient_id = enrollment.patient_id
        try:
            program = BillingProgram(enrollment.billing_program)
        except ValueError as e:
            raise PatientComputationFailure(
                str(patient_id),
                f"enrollment {enrollment.enrollment_id} has invalid billing program "
                f"{enrollment.billing_program!r}",
                cause=e,
            ) from e

        # Independent reads, no shared state
        device, time = await run_together(
            self.device_counter.count(patient_id, period, tz_name),
            self.time_aggregator.aggregate(patient_id, period, tz_name),
        )

        already_billed = enrollment.initial_setup_billed_at is not None
        context = EligibilityContext(
            billing_program=program,
            initial_setup_billed=already_billed,
        )
        eligible_codes = evaluate_eligibility(device, time, context)

        return PatientBillingSummary(
            patient_id=patient_id,
            patient_name=enrollment.patient_name,
            billing_program=program,
            period=period,
            device_transmission=device,
            time=time,
            initial_setup=InitialSetupSummary(
                eligible_99453="99453" in eligible_codes,
                already_billed=already_billed,
                billed_at=enrollment.initial_setup_billed_at,
            ),
            eligible_codes=eligible_codes,
        )


class ClinicBillingReportBuilder:
    """Rolls up billing summaries for every actively-enrolled patient of a clinic."""

    def __init__(
        self,
        patient_builder: PatientBillingSummaryBuilder,
        concurrency: int = 4,
        failure_policy: Optional[PartialFailurePolicy] = None,
    ) -> None:
        self.patient_builder = patient_builder
        self.directory = patient_builder.directory
        self.concurrency = max(concurrency, 1)
        self.failure_policy = failure_policy or patient_builder.policy.partial_failure

    async def build(
        self,
        clinician_id: uuid.UUID,
        clinic_id: uuid.UUID,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ClinicBillingReport:
        """Build the clinic report for an OWNER/ADMIN member.

        Raises:
            NotAuthorized: caller is not an active owner/admin of the clinic,
                or the clinic does not exist.
            InvalidPeriod: the requested window is empty or inverted.
            PatientComputationFailure: one patient failed and the failure
                policy is ``abort``.
        """
        attempts = self.patient_builder.read_attempts
        membership = await read_with_retry(
            lambda: self.directory.get_membership(clinician_id, clinic_id), attempts=attempts
        )
        if membership is None or not membership.can_view_clinic_billing:
            logger.info("Clinic billing report denied: clinician=%s clinic=%s", clinician_id, clinic_id)
            raise NotAuthorized()

        clinic = await read_with_retry(lambda: self.directory.get_clinic(clinic_id), attempts=attempts)
        if clinic is None:
            raise NotAuthorized()

        tz_name = self.patient_builder.usable_timezone(clinic.timezone)
        # Resolved once so every patient is measured against the same window
        period = resolve_period(start, end, tz_name, now=self.patient_builder.now)

        enrollments = await read_with_retry(
            lambda: self.directory.list_active_enrollments(clinic_id), attempts=attempts
        )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(enrollment: EnrollmentRecord) -> PatientBillingSummary | FlaggedPatient:
            async with semaphore:
                try:
                    return await self.patient_builder.summarize(enrollment, period, tz_name)
                except (BillingError, ValidationError) as e:
                    return self._handle_failure(clinic_id, enrollment, e)

        # Under abort the first failure cancels the remaining patients
        results = await run_together(*(_one(e) for e in enrollments))

        patients = [r for r in results if isinstance(r, PatientBillingSummary)]
        flagged = [r for r in results if isinstance(r, FlaggedPatient)]

        logger.info(
            "Clinic billing report built: clinic=%s patients=%d flagged=%d",
            clinic_id,
            len(patients),
            len(flagged),
        )
        return ClinicBillingReport(
            clinic_id=clinic.id,
            clinic_name=clinic.name,
            timezone=tz_name,
            period=period,
            totals=aggregate_totals(patients, flagged),
            patients=patients,
            flagged_patients=flagged,
        )

    def _handle_failure(
        self, clinic_id: uuid.UUID, enrollment: EnrollmentRecord, error: Exception
    ) -> FlaggedPatient:
        if isinstance(error, PatientComputationFailure):
            failure = error
        else:
            failure = PatientComputationFailure(str(enrollment.patient_id), str(error), cause=error)

        if self.failure_policy == PartialFailurePolicy.ABORT:
            logger.error(
                "Aborting clinic billing report: clinic=%s patient=%s reason=%s",
                clinic_id,
                enrollment.patient_id,
                failure.reason,
            )
            if failure is error:
                raise failure
            raise failure from error

        logger.warning(
            "Skipping patient in clinic billing report: clinic=%s patient=%s reason=%s",
            clinic_id,
            enrollment.patient_id,
            failure.reason,
        )
        return FlaggedPatient(
            patient_id=enrollment.patient_id,
            patient_name=enrollment.patient_name,
            reason=failure.reason,
        )


def aggregate_totals(
    patients: list[PatientBillingSummary], flagged: list[FlaggedPatient]
) -> ClinicBillingTotals:
    """Clinic-wide totals over the successfully summarized patients."""
    by_code = {
        code: sum(1 for p in patients if code in p.eligible_codes) for code in BILLABLE_CODES
    }
    return ClinicBillingTotals(
        total_patients=len(patients),
        flagged_patients=len(flagged),
        patients_with_device_data=sum(1 for p in patients if p.device_transmission.total_days > 0),
        patients_eligible_by_code=by_code,
        total_rpm_minutes=sum(p.time.rpm_minutes for p in patients),
        total_ccm_minutes=sum(p.time.ccm_minutes for p in patients),
        total_ccm_clinical_staff_minutes=sum(p.time.ccm_clinical_staff_minutes for p in patients),
        total_ccm_physician_minutes=sum(p.time.ccm_physician_minutes for p in patients),
    )
