"""Clinician time aggregation for RPM, CCM and PCM codes.

Minutes are bucketed by activity and performer type. CCM/PCM time comes from
a fixed activity subset (care-plan updates, coordination, phone calls);
``PATIENT_REVIEW`` and the remaining activities never count toward CCM.
"""

from __future__ import annotations

import uuid
from typing import Iterable

from rpm_os.billing.errors import PatientComputationFailure
from rpm_os.billing.models import (
    ActivityType,
    BillingPeriod,
    PerformerType,
    TimeEntryRecord,
    TimeSummary,
)
from rpm_os.billing.period import local_date_bounds
from rpm_os.billing.policy import CCM_ACTIVITIES, DEFAULT_POLICY, BillingPolicy, count_blocks
from rpm_os.billing.stores import TimeEntryStore, read_with_retry


def summarize_time(
    entries: Iterable[TimeEntryRecord],
    policy: BillingPolicy = DEFAULT_POLICY,
) -> TimeSummary:
    """Aggregate time entries and derive per-code eligibility.

    Raises:
        PatientComputationFailure: an entry has a non-positive duration.
    """
    minutes_by_activity: dict[ActivityType, int] = {}
    total_minutes = 0
    rpm_minutes = 0
    rpm_physician_minutes = 0
    ccm_staff_minutes = 0
    ccm_physician_minutes = 0

    for entry in entries:
        if entry.duration_minutes <= 0:
            raise PatientComputationFailure(
                str(entry.patient_id),
                f"time entry on {entry.entry_date.isoformat()} has non-positive duration "
                f"({entry.duration_minutes})",
            )
        minutes = entry.duration_minutes
        is_physician = entry.performer_type == PerformerType.PHYSICIAN_QHP

        total_minutes += minutes
        minutes_by_activity[entry.activity] = minutes_by_activity.get(entry.activity, 0) + minutes

        is_ccm = entry.activity in CCM_ACTIVITIES
        if is_ccm:
            if is_physician:
                ccm_physician_minutes += minutes
            else:
                ccm_staff_minutes += minutes

        if not is_ccm or policy.ccm_time_counts_toward_rpm:
            rpm_minutes += minutes
            if is_physician:
                rpm_physician_minutes += minutes

    # Fixed key order keeps serialized output stable
    by_activity = {
        activity: minutes_by_activity[activity]
        for activity in ActivityType
        if activity in minutes_by_activity
    }

    # RPM: 99470 and 99457 are mutually exclusive
    eligible_99457 = rpm_minutes >= policy.rpm_minutes_base
    eligible_99470 = not eligible_99457 and rpm_minutes >= policy.rpm_minutes_low
    eligible_99458_count = count_blocks(
        rpm_minutes,
        policy.rpm_minutes_base,
        policy.rpm_addon_block,
        policy.rpm_addon_block_cap,
    )
    eligible_99091 = rpm_physician_minutes >= policy.rpm_physician_minutes

    eligible_99490 = ccm_staff_minutes >= policy.ccm_staff_base
    eligible_99439_count = count_blocks(
        ccm_staff_minutes,
        policy.ccm_staff_base,
        policy.ccm_staff_block,
        policy.ccm_staff_block_cap,
    )
    eligible_99491 = ccm_physician_minutes >= policy.ccm_physician_base
    eligible_99437_count = count_blocks(
        ccm_physician_minutes,
        policy.ccm_physician_base,
        policy.ccm_physician_block,
        policy.ccm_physician_block_cap,
    )

    eligible_99424 = ccm_physician_minutes >= policy.pcm_physician_base
    eligible_99425_count = count_blocks(
        ccm_physician_minutes,
        policy.pcm_physician_base,
        policy.pcm_physician_block,
        policy.pcm_physician_block_cap,
    )
    eligible_99426 = ccm_staff_minutes >= policy.pcm_staff_base
    eligible_99427_count = count_blocks(
        ccm_staff_minutes,
        policy.pcm_staff_base,
        policy.pcm_staff_block,
        policy.pcm_staff_block_cap,
    )

    return TimeSummary(
        total_minutes=total_minutes,
        by_activity=by_activity,
        rpm_minutes=rpm_minutes,
        rpm_physician_minutes=rpm_physician_minutes,
        eligible_99470=eligible_99470,
        eligible_99457=eligible_99457,
        eligible_99458_count=eligible_99458_count,
        eligible_99091=eligible_99091,
        ccm_minutes=ccm_staff_minutes + ccm_physician_minutes,
        ccm_clinical_staff_minutes=ccm_staff_minutes,
        ccm_physician_minutes=ccm_physician_minutes,
        eligible_99490=eligible_99490,
        eligible_99439_count=eligible_99439_count,
        eligible_99491=eligible_99491,
        eligible_99437_count=eligible_99437_count,
        pcm_clinical_staff_minutes=ccm_staff_minutes,
        pcm_physician_minutes=ccm_physician_minutes,
        eligible_99424=eligible_99424,
        eligible_99425_count=eligible_99425_count,
        eligible_99426=eligible_99426,
        eligible_99427_count=eligible_99427_count,
    )


class TimeAggregator:
    """Reads and aggregates a patient's logged time for a period."""

    def __init__(
        self,
        store: TimeEntryStore,
        policy: BillingPolicy = DEFAULT_POLICY,
        read_attempts: int = 3,
    ) -> None:
        self.store = store
        self.policy = policy
        self.read_attempts = read_attempts

    async def aggregate(
        self, patient_id: uuid.UUID, period: BillingPeriod, tz_name: str
    ) -> TimeSummary:
        first_date, end_date = local_date_bounds(period, tz_name)
        entries = await read_with_retry(
            lambda: self.store.list_entries(patient_id, first_date, end_date),
            attempts=self.read_attempts,
        )
        return summarize_time(entries, policy=self.policy)
