"""RPM OS: remote patient monitoring billing eligibility service."""

__version__ = "0.1.0"
