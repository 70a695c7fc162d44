"""Pydantic models for the billing eligibility engine.

Source projections (read from the measurement, time-entry and enrollment
stores) and the derived summaries returned to the clinician portal. Derived
models serialize with camelCase keys; the portal renders those fields
directly, so renaming one is a breaking change.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MANUAL_SOURCE = "manual"


class ActivityType(str, Enum):
    """Clinician time-entry activity categories."""

    PATIENT_REVIEW = "PATIENT_REVIEW"
    CARE_PLAN_UPDATE = "CARE_PLAN_UPDATE"
    PHONE_CALL = "PHONE_CALL"
    COORDINATION = "COORDINATION"
    DOCUMENTATION = "DOCUMENTATION"
    OTHER = "OTHER"


class PerformerType(str, Enum):
    """Who performed the logged time."""

    CLINICAL_STAFF = "CLINICAL_STAFF"
    PHYSICIAN_QHP = "PHYSICIAN_QHP"


class BillingProgram(str, Enum):
    """Care-management track attached to an enrollment."""

    RPM_CCM = "RPM_CCM"  # 2+ chronic conditions
    RPM_PCM = "RPM_PCM"  # single high-risk condition
    RPM_ONLY = "RPM_ONLY"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DISCHARGED = "DISCHARGED"


class MembershipRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    CLINICIAN = "CLINICIAN"
    STAFF = "STAFF"


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class PartialFailurePolicy(str, Enum):
    """What a clinic report does when one patient's summary fails."""

    SKIP = "skip"
    ABORT = "abort"


# ---------------------------------------------------------------------------
# Source projections
# ---------------------------------------------------------------------------


class MeasurementRecord(BaseModel):
    patient_id: uuid.UUID
    timestamp: datetime
    source: str = MANUAL_SOURCE

    @property
    def is_device(self) -> bool:
        return self.source != MANUAL_SOURCE


class TimeEntryRecord(BaseModel):
    patient_id: uuid.UUID
    clinic_id: uuid.UUID
    entry_date: date
    duration_minutes: int
    activity: ActivityType
    performer_type: PerformerType = PerformerType.CLINICAL_STAFF
    notes: Optional[str] = None


class ClinicRecord(BaseModel):
    id: uuid.UUID
    name: str
    timezone: str


class MembershipRecord(BaseModel):
    clinic_id: uuid.UUID
    clinician_id: uuid.UUID
    role: MembershipRole
    status: MembershipStatus

    @property
    def can_view_clinic_billing(self) -> bool:
        return self.status == MembershipStatus.ACTIVE and self.role in (
            MembershipRole.OWNER,
            MembershipRole.ADMIN,
        )


class EnrollmentRecord(BaseModel):
    enrollment_id: uuid.UUID
    patient_id: uuid.UUID
    patient_name: str
    clinician_id: uuid.UUID
    clinic_id: uuid.UUID
    # Stored value, checked against BillingProgram when the patient is summarized
    billing_program: str = BillingProgram.RPM_CCM.value
    initial_setup_billed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Derived results
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BillingPeriod(CamelModel):
    """Half-open ``[from, to)`` window of UTC instants."""

    start: datetime = Field(alias="from")
    end: datetime = Field(alias="to")


class DeviceTransmissionSummary(CamelModel):
    total_days: int = 0
    dates: list[str] = Field(default_factory=list)
    eligible_99445: bool = False
    eligible_99454: bool = False


class TimeSummary(CamelModel):
    total_minutes: int = 0
    by_activity: dict[ActivityType, int] = Field(default_factory=dict)

    rpm_minutes: int = 0
    rpm_physician_minutes: int = 0
    eligible_99470: bool = False
    eligible_99457: bool = False
    eligible_99458_count: int = 0
    eligible_99091: bool = False

    # CCM breakdown by performer type
    ccm_minutes: int = 0
    ccm_clinical_staff_minutes: int = 0
    ccm_physician_minutes: int = 0
    eligible_99490: bool = False
    eligible_99439_count: int = 0
    eligible_99491: bool = False
    eligible_99437_count: int = 0

    # PCM uses the same minutes as CCM, billed under different codes
    pcm_clinical_staff_minutes: int = 0
    pcm_physician_minutes: int = 0
    eligible_99424: bool = False
    eligible_99425_count: int = 0
    eligible_99426: bool = False
    eligible_99427_count: int = 0


class InitialSetupSummary(CamelModel):
    eligible_99453: bool = False
    already_billed: bool = False
    billed_at: Optional[datetime] = None


class PatientBillingSummary(CamelModel):
    patient_id: uuid.UUID
    patient_name: str
    billing_program: BillingProgram
    period: BillingPeriod
    device_transmission: DeviceTransmissionSummary
    time: TimeSummary
    initial_setup: InitialSetupSummary
    eligible_codes: list[str] = Field(default_factory=list)


class FlaggedPatient(CamelModel):
    """A patient left out of a clinic report because their summary failed."""

    patient_id: uuid.UUID
    patient_name: str
    reason: str


class ClinicBillingTotals(CamelModel):
    total_patients: int = 0
    flagged_patients: int = 0
    patients_with_device_data: int = 0
    patients_eligible_by_code: dict[str, int] = Field(default_factory=dict)
    total_rpm_minutes: int = 0
    total_ccm_minutes: int = 0
    total_ccm_clinical_staff_minutes: int = 0
    total_ccm_physician_minutes: int = 0


class ClinicBillingReport(CamelModel):
    clinic_id: uuid.UUID
    clinic_name: str
    timezone: str
    period: BillingPeriod
    totals: ClinicBillingTotals
    patients: list[PatientBillingSummary] = Field(default_factory=list)
    flagged_patients: list[FlaggedPatient] = Field(default_factory=list)
