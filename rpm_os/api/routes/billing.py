"""Billing eligibility endpoints for the clinician portal."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from rpm_os.api.dependencies import (
    get_clinic_report_builder,
    get_current_clinician,
    get_patient_summary_builder,
)
from rpm_os.billing.models import ClinicBillingReport, PatientBillingSummary
from rpm_os.billing.service import ClinicBillingReportBuilder, PatientBillingSummaryBuilder
from rpm_os.core.models import Clinician

router = APIRouter()


@router.get(
    "/patients/{patient_id}/billing-summary",
    response_model=PatientBillingSummary,
)
async def get_patient_billing_summary(
    patient_id: uuid.UUID,
    start: Optional[datetime] = Query(None, alias="from", description="ISO-8601 period start"),
    end: Optional[datetime] = Query(None, alias="to", description="ISO-8601 period end (exclusive)"),
    current_clinician: Clinician = Depends(get_current_clinician),
    builder: PatientBillingSummaryBuilder = Depends(get_patient_summary_builder),
) -> PatientBillingSummary:
    """Billable CPT codes for one patient over a period (default: month to date)."""
    return await builder.build(current_clinician.id, patient_id, start, end)


@router.get(
    "/clinics/{clinic_id}/billing-report",
    response_model=ClinicBillingReport,
)
async def get_clinic_billing_report(
    clinic_id: uuid.UUID,
    start: Optional[datetime] = Query(None, alias="from", description="ISO-8601 period start"),
    end: Optional[datetime] = Query(None, alias="to", description="ISO-8601 period end (exclusive)"),
    current_clinician: Clinician = Depends(get_current_clinician),
    builder: ClinicBillingReportBuilder = Depends(get_clinic_report_builder),
) -> ClinicBillingReport:
    """Clinic-wide billing rollup. Requires an OWNER or ADMIN membership."""
    return await builder.build(current_clinician.id, clinic_id, start, end)
