"""Maps domain exceptions to HTTP responses for on-demand calls."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from caresync.utils.error_handling import (
    AlertNotFoundError,
    AlertPermissionError,
    AlertStateError,
    AuthError,
    CredentialError,
    NetworkError,
    ProviderError,
    ProviderNotConnectedError,
    SessionExpiredError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = [
    (SessionExpiredError, 401),
    (AuthError, 401),
    (NetworkError, 502),
    (ProviderNotConnectedError, 400),
    (AlertNotFoundError, 404),
    (AlertPermissionError, 403),
    (AlertStateError, 409),
    (CredentialError, 500),
    (ProviderError, 502),
]


def status_code_for(exc: Exception) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


def _message(exc: Exception) -> str:
    if isinstance(exc, CredentialError):
        return "Stored credentials could not be read; reconnect the provider"
    return getattr(exc, "message", None) or str(exc)


def register_error_handlers(app: FastAPI) -> None:
    async def domain_error_handler(request: Request, exc: Exception):
        status_code = status_code_for(exc)
        logger.warning(
            f"{status_code} {type(exc).__name__}",
            extra={"log_type": "domain_error", "path": str(request.url.path), "status_code": status_code, "error": str(exc)},
        )
        return JSONResponse(status_code=status_code, content={"status": "error", "message": _message(exc)})

    for exc_type in (ProviderError, AlertNotFoundError, AlertPermissionError, AlertStateError, CredentialError):
        app.add_exception_handler(exc_type, domain_error_handler)
