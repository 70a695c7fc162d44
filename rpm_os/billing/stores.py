"""Read interfaces the billing engine consumes.

The engine never writes. Implementations must raise ``UpstreamReadFailure``
when the backing store is unreachable; ``read_with_retry`` re-issues such
reads a bounded number of times before letting the failure surface.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Awaitable, Callable, Protocol, Sequence, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rpm_os.billing.errors import UpstreamReadFailure
from rpm_os.billing.models import (
    ClinicRecord,
    EnrollmentRecord,
    MeasurementRecord,
    MembershipRecord,
    TimeEntryRecord,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MeasurementStore(Protocol):
    async def list_device_measurements(
        self, patient_id: uuid.UUID, start: datetime, end: datetime
    ) -> Sequence[MeasurementRecord]:
        """Non-manual measurements with ``start <= timestamp < end``."""
        ...


class TimeEntryStore(Protocol):
    async def list_entries(
        self, patient_id: uuid.UUID, first_date: date, end_date: date
    ) -> Sequence[TimeEntryRecord]:
        """Entries with ``first_date <= entry_date < end_date``."""
        ...


class EnrollmentDirectory(Protocol):
    async def get_active_enrollment(
        self, clinician_id: uuid.UUID, patient_id: uuid.UUID
    ) -> EnrollmentRecord | None: ...

    async def get_membership(
        self, clinician_id: uuid.UUID, clinic_id: uuid.UUID
    ) -> MembershipRecord | None: ...

    async def get_clinic(self, clinic_id: uuid.UUID) -> ClinicRecord | None: ...

    async def list_active_enrollments(self, clinic_id: uuid.UUID) -> Sequence[EnrollmentRecord]:
        """One active enrollment per patient at the clinic."""
        ...


async def read_with_retry(read: Callable[[], Awaitable[T]], attempts: int = 3) -> T:
    """Run ``read`` retrying transient ``UpstreamReadFailure`` errors."""
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(UpstreamReadFailure),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(
                    "Retrying store read (attempt %d/%d)",
                    attempt.retry_state.attempt_number,
                    attempts,
                )
            return await read()
    raise AssertionError("unreachable")  # pragma: no cover
