"""CareSync: CGM ingestion, glucose alerting and caregiver notification service."""

__version__ = "0.1.0"
