"""Device-local expiring cache and encrypted exam storage for the school records app."""

__version__ = "0.1.0"
