"""FastAPI dependencies for clinician auth and billing service wiring."""

from __future__ import annotations

import hmac
import uuid

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rpm_os.billing.policy import BillingPolicy
from rpm_os.billing.service import ClinicBillingReportBuilder, PatientBillingSummaryBuilder
from rpm_os.config import get_settings
from rpm_os.core.auth import ACCESS_COOKIE, bearer_token, decode_token
from rpm_os.core.database import get_db, get_session_factory
from rpm_os.core.models import Clinician
from rpm_os.core.repository import EnrollmentRepository, MeasurementRepository, TimeEntryRepository


async def _load_clinician(db: AsyncSession, clinician_id: str) -> Clinician | None:
    try:
        cid = uuid.UUID(clinician_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject")
    result = await db.execute(
        select(Clinician).where(Clinician.id == cid, Clinician.active.is_(True))
    )
    return result.scalar_one_or_none()


async def get_current_clinician(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Clinician:
    """Resolve the authenticated clinician.

    Priority:
    1. Access JWT (cookie or Bearer header) → load Clinician
    2. API key (Bearer / X-API-Key) + X-Clinician-Id header → load Clinician
    3. Raise 401
    """
    authorization = request.headers.get("Authorization")

    # --- Path 1: JWT ---
    token = request.cookies.get(ACCESS_COOKIE) or bearer_token(authorization)
    if token:
        claims = decode_token(token)
        if claims and claims.get("type") == "access" and claims.get("sub"):
            clinician = await _load_clinician(db, claims["sub"])
            if clinician:
                return clinician
        # Not a valid access token → fall through to API key check

    # --- Path 2: API key ---
    settings = get_settings()
    if settings.api_key:
        provided_key = bearer_token(authorization) or request.headers.get("X-API-Key")
        if provided_key and hmac.compare_digest(provided_key, settings.api_key):
            clinician_id = request.headers.get("X-Clinician-Id")
            if not clinician_id:
                raise HTTPException(status_code=400, detail="X-Clinician-Id header required")
            clinician = await _load_clinician(db, clinician_id)
            if clinician:
                return clinician

    raise HTTPException(status_code=401, detail="Not authenticated")


def get_billing_policy() -> BillingPolicy:
    return BillingPolicy.from_settings(get_settings())


def get_patient_summary_builder(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    policy: BillingPolicy = Depends(get_billing_policy),
) -> PatientBillingSummaryBuilder:
    settings = get_settings()
    return PatientBillingSummaryBuilder(
        measurements=MeasurementRepository(session_factory),
        time_entries=TimeEntryRepository(session_factory),
        directory=EnrollmentRepository(session_factory),
        policy=policy,
        read_attempts=settings.upstream_read_attempts,
        default_timezone=settings.default_clinic_timezone,
    )


def get_clinic_report_builder(
    patient_builder: PatientBillingSummaryBuilder = Depends(get_patient_summary_builder),
) -> ClinicBillingReportBuilder:
    return ClinicBillingReportBuilder(
        patient_builder,
        concurrency=get_settings().billing_report_concurrency,
    )
