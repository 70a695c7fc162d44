"""Billing module: RPM/CCM/PCM eligibility from device days and logged time."""

from rpm_os.billing.device_days import DeviceTransmissionCounter, summarize_device_days
from rpm_os.billing.eligibility import (
    BILLABLE_CODES,
    CODE_RULES,
    CodeRule,
    EligibilityContext,
    evaluate_eligibility,
)
from rpm_os.billing.errors import (
    BillingError,
    InvalidPeriod,
    NotAuthorized,
    PatientComputationFailure,
    UpstreamReadFailure,
)
from rpm_os.billing.models import (
    BillingPeriod,
    ClinicBillingReport,
    DeviceTransmissionSummary,
    PatientBillingSummary,
    TimeSummary,
)
from rpm_os.billing.period import resolve_period
from rpm_os.billing.policy import BillingPolicy
from rpm_os.billing.service import ClinicBillingReportBuilder, PatientBillingSummaryBuilder
from rpm_os.billing.time_aggregation import TimeAggregator, summarize_time

__all__ = [
    "BILLABLE_CODES",
    "CODE_RULES",
    "BillingError",
    "BillingPeriod",
    "BillingPolicy",
    "ClinicBillingReport",
    "ClinicBillingReportBuilder",
    "CodeRule",
    "DeviceTransmissionCounter",
    "DeviceTransmissionSummary",
    "EligibilityContext",
    "InvalidPeriod",
    "NotAuthorized",
    "PatientBillingSummary",
    "PatientBillingSummaryBuilder",
    "PatientComputationFailure",
    "TimeAggregator",
    "TimeSummary",
    "UpstreamReadFailure",
    "evaluate_eligibility",
    "resolve_period",
    "summarize_device_days",
    "summarize_time",
]
