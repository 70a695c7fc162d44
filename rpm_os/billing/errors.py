"""Billing engine exceptions.

Every error the engine raises derives from ``BillingError`` so the API layer
can map the whole family in one place.
"""

from typing import Optional


class BillingError(Exception):
    """Base exception for billing engine errors."""

    pass


class InvalidPeriod(BillingError):
    """Requested billing window is malformed (client error, never retried)."""

    pass


class NotAuthorized(BillingError):
    """Caller lacks the enrollment or clinic role required.

    The message is deliberately generic: it must not reveal whether the
    patient or clinic exists.
    """

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class UpstreamReadFailure(BillingError):
    """A measurement, time-entry or enrollment store could not be read.

    Transient; the whole request is safe to retry since nothing is written.
    """

    def __init__(self, store: str, message: str = ""):
        self.store = store
        super().__init__(f"{store} read failed: {message}" if message else f"{store} read failed")


class PatientComputationFailure(BillingError):
    """Anomalous source data for a single patient."""

    def __init__(self, patient_id: str, reason: str, cause: Optional[Exception] = None):
        self.patient_id = patient_id
        self.reason = reason
        self.cause = cause
        super().__init__(f"Patient {patient_id}: {reason}")
