"""Device transmission day counting.

A device-transmission day is a clinic-local calendar date with at least one
non-manual measurement. Days are bucketed in the clinic's timezone, never
UTC: 23:30 and 00:10 local on consecutive dates are two days even when both
fall on the same UTC date.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from rpm_os.billing.models import BillingPeriod, DeviceTransmissionSummary, MeasurementRecord
from rpm_os.billing.period import load_timezone, local_date
from rpm_os.billing.policy import DEFAULT_POLICY, BillingPolicy
from rpm_os.billing.stores import MeasurementStore, read_with_retry


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def summarize_device_days(
    measurements: Iterable[MeasurementRecord],
    tz_name: str,
    period: Optional[BillingPeriod] = None,
    policy: BillingPolicy = DEFAULT_POLICY,
) -> DeviceTransmissionSummary:
    """Collapse device measurements into distinct clinic-local dates."""
    tz = load_timezone(tz_name)
    unique_dates: set[str] = set()
    for m in measurements:
        if not m.is_device:
            continue
        ts = _aware(m.timestamp)
        if period is not None and not (period.start <= ts < period.end):
            continue
        unique_dates.add(local_date(ts, tz).isoformat())

    dates = sorted(unique_dates)
    total_days = len(dates)

    # 99445 and 99454 are mutually exclusive
    eligible_99454 = total_days >= policy.device_days_high
    eligible_99445 = not eligible_99454 and total_days >= policy.device_days_low

    return DeviceTransmissionSummary(
        total_days=total_days,
        dates=dates,
        eligible_99445=eligible_99445,
        eligible_99454=eligible_99454,
    )


class DeviceTransmissionCounter:
    """Counts a patient's device-transmission days for a period."""

    def __init__(
        self,
        store: MeasurementStore,
        policy: BillingPolicy = DEFAULT_POLICY,
        read_attempts: int = 3,
    ) -> None:
        self.store = store
        self.policy = policy
        self.read_attempts = read_attempts

    async def count(
        self, patient_id: uuid.UUID, period: BillingPeriod, tz_name: str
    ) -> DeviceTransmissionSummary:
        measurements = await read_with_retry(
            lambda: self.store.list_device_measurements(patient_id, period.start, period.end),
            attempts=self.read_attempts,
        )
        return summarize_device_days(measurements, tz_name, period=period, policy=self.policy)
