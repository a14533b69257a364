from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class ProviderError(Exception):
    """Base class for failures talking to an upstream CGM provider."""
    def __init__(self, message: str, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(f"{provider + ': ' if provider else ''}{message}")


class AuthError(ProviderError):
    """Bad credentials or a malformed identity response. Aborts this user's sync."""


class SessionExpiredError(ProviderError):
    """The provider rejected a cached session identifier."""


class NetworkError(ProviderError):
    """Transport failure, timeout or unexpected HTTP status."""
    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, provider)


class ProviderNotConnectedError(ProviderError):
    """The owner has no connected session for this provider."""


class CredentialError(ValueError):
    """A stored credential could not be decrypted."""


class PipelineError(Exception):
    """Base class for record-level pipeline errors."""
    def __init__(self, message: str, field: Optional[str] = None, severity: ErrorSeverity = ErrorSeverity.MEDIUM):
        self.message = message
        self.field = field
        self.severity = severity
        super().__init__(f"{field + ': ' if field else ''}{message}")


class ValidationError(PipelineError):
    """A single malformed upstream record. Skipped, never fatal to the batch."""


class AlertNotFoundError(LookupError):
    """No alert exists with the given id."""


class AlertStateError(Exception):
    """An alert status transition that is not allowed."""


class AlertPermissionError(Exception):
    """The actor is not allowed to act on this alert."""


class ErrorCollector:
    """
    Collects and reports errors during a batch run.
    """
    def __init__(self):
        self.errors: List[Dict[str, Any]] = []

    def add_error(self, error_type: str, field: Optional[str], message: str, severity: ErrorSeverity = ErrorSeverity.MEDIUM):
        self.errors.append({
            'type': error_type,
            'field': field,
            'message': message,
            'severity': severity.value
        })

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def get_errors(self) -> List[Dict[str, Any]]:
        return self.errors
