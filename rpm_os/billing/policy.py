"""Reimbursement thresholds (2026 CMS rules) and block counting.

RPM device supply:
  99445   2-15 device transmission days
  99454   16+ device transmission days
RPM treatment management time:
  99470   10-19 min (mutually exclusive with 99457)
  99457   first 20 min
  99458   each additional complete 20 min
  99091   30+ min physician data interpretation
CCM:
  99490 / 99439   clinical staff, 20 min base + 20 min add-ons (max 2)
  99491 / 99437   physician, 30 min base + 30 min add-ons (max 2)
PCM:
  99424 / 99425   physician, 30 min base + 30 min add-ons (max 2)
  99426 / 99427   clinical staff, 30 min base + 30 min add-ons (max 2)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rpm_os.billing.models import ActivityType, PartialFailurePolicy
from rpm_os.config import Settings, get_settings

CCM_ACTIVITIES: frozenset[ActivityType] = frozenset(
    {
        ActivityType.CARE_PLAN_UPDATE,
        ActivityType.COORDINATION,
        ActivityType.PHONE_CALL,
    }
)


def count_blocks(minutes: int, base: int, block: int, cap: Optional[int] = None) -> int:
    """Count complete ``block``-minute units beyond the first ``base`` minutes.

    A partial block never counts. Returns 0 when the base threshold is not met.
    """
    if minutes < base:
        return 0
    blocks = (minutes - base) // block
    if cap is not None:
        blocks = min(blocks, cap)
    return blocks


@dataclass(frozen=True)
class BillingPolicy:
    """Numeric thresholds for every code the engine evaluates."""

    device_days_low: int = 2
    device_days_high: int = 16

    rpm_minutes_low: int = 10
    rpm_minutes_base: int = 20
    rpm_addon_block: int = 20
    rpm_addon_block_cap: Optional[int] = None
    rpm_physician_minutes: int = 30

    ccm_staff_base: int = 20
    ccm_staff_block: int = 20
    ccm_staff_block_cap: int = 2
    ccm_physician_base: int = 30
    ccm_physician_block: int = 30
    ccm_physician_block_cap: int = 2

    pcm_physician_base: int = 30
    pcm_physician_block: int = 30
    pcm_physician_block_cap: int = 2
    pcm_staff_base: int = 30
    pcm_staff_block: int = 30
    pcm_staff_block_cap: int = 2

    ccm_time_counts_toward_rpm: bool = False
    partial_failure: PartialFailurePolicy = PartialFailurePolicy.SKIP

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "BillingPolicy":
        settings = settings or get_settings()
        return cls(
            rpm_addon_block_cap=settings.rpm_addon_block_cap,
            ccm_time_counts_toward_rpm=settings.ccm_time_counts_toward_rpm,
            partial_failure=PartialFailurePolicy(settings.billing_partial_failure_policy),
        )


DEFAULT_POLICY = BillingPolicy()
