"""Restaurant back-office entitlement subsystem."""

__version__ = "0.1.0"
