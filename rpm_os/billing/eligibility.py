"""Table-driven CPT eligibility evaluation.

``CODE_RULES`` is the single place reimbursement policy is expressed. Each
rule maps the device and time summaries for one patient-period to a unit
count; the evaluator appends the code once per unit, in table order:
RPM setup and device codes, RPM time codes, then CCM and PCM codes.

To add a code, add a ``CodeRule``. Nothing else changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from rpm_os.billing.models import BillingProgram, DeviceTransmissionSummary, TimeSummary


class CodeCategory(str, Enum):
    RPM_SETUP = "rpm_setup"
    RPM_DEVICE = "rpm_device"
    RPM_TIME = "rpm_time"
    CCM = "ccm"
    PCM = "pcm"


@dataclass(frozen=True)
class EligibilityContext:
    """Per-enrollment facts that gate codes beyond the raw summaries."""

    billing_program: BillingProgram = BillingProgram.RPM_CCM
    initial_setup_billed: bool = False


UnitsFn = Callable[[DeviceTransmissionSummary, TimeSummary, EligibilityContext], int]


@dataclass(frozen=True)
class CodeRule:
    code: str
    category: CodeCategory
    description: str
    units: UnitsFn


def _once(flag: bool) -> int:
    return 1 if flag else 0


def _ccm(ctx: EligibilityContext) -> bool:
    return ctx.billing_program == BillingProgram.RPM_CCM


def _pcm(ctx: EligibilityContext) -> bool:
    return ctx.billing_program == BillingProgram.RPM_PCM


def initial_setup_eligible(device: DeviceTransmissionSummary, ctx: EligibilityContext) -> bool:
    """99453 is billable once per enrollment, the first period with 16+ days."""
    return device.eligible_99454 and not ctx.initial_setup_billed


CODE_RULES: tuple[CodeRule, ...] = (
    # RPM setup and device supply
    CodeRule(
        "99453", CodeCategory.RPM_SETUP, "Initial device setup and education",
        lambda d, t, c: _once(initial_setup_eligible(d, c)),
    ),
    CodeRule(
        "99454", CodeCategory.RPM_DEVICE, "Device supply, 16+ transmission days",
        lambda d, t, c: _once(d.eligible_99454),
    ),
    CodeRule(
        "99445", CodeCategory.RPM_DEVICE, "Device supply, 2-15 transmission days",
        lambda d, t, c: _once(d.eligible_99445),
    ),
    # RPM treatment management time
    CodeRule(
        "99457", CodeCategory.RPM_TIME, "RPM management, first 20 minutes",
        lambda d, t, c: _once(t.eligible_99457),
    ),
    CodeRule(
        "99470", CodeCategory.RPM_TIME, "RPM management, 10-19 minutes",
        lambda d, t, c: _once(t.eligible_99470),
    ),
    CodeRule(
        "99458", CodeCategory.RPM_TIME, "RPM management, each additional 20 minutes",
        lambda d, t, c: t.eligible_99458_count if t.eligible_99457 else 0,
    ),
    CodeRule(
        "99091", CodeCategory.RPM_TIME, "Physician data interpretation, 30+ minutes",
        lambda d, t, c: _once(t.eligible_99091),
    ),
    # CCM track: staff and physician codes may coexist
    CodeRule(
        "99490", CodeCategory.CCM, "CCM clinical staff, first 20 minutes",
        lambda d, t, c: _once(_ccm(c) and t.eligible_99490),
    ),
    CodeRule(
        "99439", CodeCategory.CCM, "CCM clinical staff, each additional 20 minutes",
        lambda d, t, c: t.eligible_99439_count if _ccm(c) and t.eligible_99490 else 0,
    ),
    CodeRule(
        "99491", CodeCategory.CCM, "CCM physician, first 30 minutes",
        lambda d, t, c: _once(_ccm(c) and t.eligible_99491),
    ),
    CodeRule(
        "99437", CodeCategory.CCM, "CCM physician, each additional 30 minutes",
        lambda d, t, c: t.eligible_99437_count if _ccm(c) and t.eligible_99491 else 0,
    ),
    # PCM track: physician codes take priority over staff codes
    CodeRule(
        "99424", CodeCategory.PCM, "PCM physician, first 30 minutes",
        lambda d, t, c: _once(_pcm(c) and t.eligible_99424),
    ),
    CodeRule(
        "99425", CodeCategory.PCM, "PCM physician, each additional 30 minutes",
        lambda d, t, c: t.eligible_99425_count if _pcm(c) and t.eligible_99424 else 0,
    ),
    CodeRule(
        "99426", CodeCategory.PCM, "PCM clinical staff, first 30 minutes",
        lambda d, t, c: _once(_pcm(c) and t.eligible_99426 and not t.eligible_99424),
    ),
    CodeRule(
        "99427", CodeCategory.PCM, "PCM clinical staff, each additional 30 minutes",
        lambda d, t, c: (
            t.eligible_99427_count
            if _pcm(c) and t.eligible_99426 and not t.eligible_99424
            else 0
        ),
    ),
)

BILLABLE_CODES: tuple[str, ...] = tuple(rule.code for rule in CODE_RULES)


def evaluate_eligibility(
    device: DeviceTransmissionSummary,
    time: TimeSummary,
    context: EligibilityContext = EligibilityContext(),
    rules: tuple[CodeRule, ...] = CODE_RULES,
) -> list[str]:
    """Return billable codes in table order, one entry per unit.

    Never raises: every summary, including an all-zero one, maps to a
    defined (possibly empty) list.
    """
    codes: list[str] = []
    for rule in rules:
        units = max(rule.units(device, time, context), 0)
        codes.extend([rule.code] * units)
    return codes
