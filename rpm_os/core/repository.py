"""Read-only repositories backing the billing engine's store interfaces.

Each query opens its own session from the shared factory, so the
measurement and time-entry reads for one patient can run concurrently.
Database errors surface as ``UpstreamReadFailure``.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rpm_os.billing.errors import PatientComputationFailure, UpstreamReadFailure
from rpm_os.billing.models import (
    MANUAL_SOURCE,
    ActivityType,
    ClinicRecord,
    EnrollmentRecord,
    EnrollmentStatus,
    MeasurementRecord,
    MembershipRecord,
    MembershipRole,
    MembershipStatus,
    PerformerType,
    TimeEntryRecord,
)
from rpm_os.core.models import Clinic, ClinicMembership, Enrollment, Measurement, Patient, TimeEntry


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _ReadRepository:
    store_name = "core"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _all(self, stmt: Select) -> Sequence:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return result.all()
        except SQLAlchemyError as e:
            raise UpstreamReadFailure(self.store_name, type(e).__name__) from e


class MeasurementRepository(_ReadRepository):
    store_name = "measurements"

    async def list_device_measurements(
        self, patient_id: uuid.UUID, start: datetime, end: datetime
    ) -> list[MeasurementRecord]:
        stmt = (
            select(Measurement.patient_id, Measurement.timestamp, Measurement.source)
            .where(
                Measurement.patient_id == patient_id,
                Measurement.timestamp >= _as_utc(start),
                Measurement.timestamp < _as_utc(end),
                Measurement.source != MANUAL_SOURCE,
            )
            .order_by(Measurement.timestamp)
        )
        rows = await self._all(stmt)
        return [
            MeasurementRecord(patient_id=pid, timestamp=_as_utc(ts), source=source)
            for pid, ts, source in rows
        ]


class TimeEntryRepository(_ReadRepository):
    store_name = "time_entries"

    async def list_entries(
        self, patient_id: uuid.UUID, first_date: date, end_date: date
    ) -> list[TimeEntryRecord]:
        stmt = (
            select(TimeEntry)
            .where(
                TimeEntry.patient_id == patient_id,
                TimeEntry.entry_date >= first_date,
                TimeEntry.entry_date < end_date,
            )
            .order_by(TimeEntry.entry_date, TimeEntry.created_at)
        )
        rows = await self._all(stmt)
        records = []
        for (entry,) in rows:
            try:
                activity = ActivityType(entry.activity)
                performer = PerformerType(entry.performer_type)
            except ValueError as e:
                raise PatientComputationFailure(
                    str(patient_id), f"time entry {entry.id} has invalid category: {e}", cause=e
                ) from e
            records.append(
                TimeEntryRecord(
                    patient_id=entry.patient_id,
                    clinic_id=entry.clinic_id,
                    entry_date=entry.entry_date,
                    duration_minutes=entry.duration_minutes,
                    activity=activity,
                    performer_type=performer,
                    notes=entry.notes,
                )
            )
        return records


class EnrollmentRepository(_ReadRepository):
    store_name = "enrollments"

    @staticmethod
    def _to_record(enrollment: Enrollment, patient_name: str) -> EnrollmentRecord:
        return EnrollmentRecord(
            enrollment_id=enrollment.id,
            patient_id=enrollment.patient_id,
            patient_name=patient_name,
            clinician_id=enrollment.clinician_id,
            clinic_id=enrollment.clinic_id,
            billing_program=enrollment.billing_program,
            initial_setup_billed_at=(
                _as_utc(enrollment.initial_setup_billed_at)
                if enrollment.initial_setup_billed_at
                else None
            ),
        )

    async def get_active_enrollment(
        self, clinician_id: uuid.UUID, patient_id: uuid.UUID
    ) -> Optional[EnrollmentRecord]:
        stmt = (
            select(Enrollment, Patient.name)
            .join(Patient, Patient.id == Enrollment.patient_id)
            .where(
                Enrollment.clinician_id == clinician_id,
                Enrollment.patient_id == patient_id,
                Enrollment.status == EnrollmentStatus.ACTIVE.value,
            )
            .order_by(Enrollment.enrolled_at)
            .limit(1)
        )
        rows = await self._all(stmt)
        if not rows:
            return None
        enrollment, name = rows[0]
        return self._to_record(enrollment, name)

    async def list_active_enrollments(self, clinic_id: uuid.UUID) -> list[EnrollmentRecord]:
        stmt = (
            select(Enrollment, Patient.name)
            .join(Patient, Patient.id == Enrollment.patient_id)
            .where(
                Enrollment.clinic_id == clinic_id,
                Enrollment.status == EnrollmentStatus.ACTIVE.value,
            )
            .order_by(Patient.name, Patient.id, Enrollment.enrolled_at)
        )
        rows = await self._all(stmt)

        # One entry per patient: the earliest active enrollment wins
        seen: set[uuid.UUID] = set()
        records = []
        for enrollment, name in rows:
            if enrollment.patient_id in seen:
                continue
            seen.add(enrollment.patient_id)
            records.append(self._to_record(enrollment, name))
        return records

    async def get_membership(
        self, clinician_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> Optional[MembershipRecord]:
        stmt = select(ClinicMembership).where(
            ClinicMembership.clinician_id == clinician_id,
            ClinicMembership.clinic_id == clinic_id,
        )
        rows = await self._all(stmt)
        if not rows:
            return None
        (membership,) = rows[0]
        return MembershipRecord(
            clinic_id=membership.clinic_id,
            clinician_id=membership.clinician_id,
            role=MembershipRole(membership.role),
            status=MembershipStatus(membership.status),
        )

    async def get_clinic(self, clinic_id: uuid.UUID) -> Optional[ClinicRecord]:
        stmt = select(Clinic.id, Clinic.name, Clinic.timezone).where(Clinic.id == clinic_id)
        rows = await self._all(stmt)
        if not rows:
            return None
        cid, name, tz_name = rows[0]
        return ClinicRecord(id=cid, name=name, timezone=tz_name)
