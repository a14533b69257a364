"""Shared HTTP plumbing for the upstream CGM provider clients."""

import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from caresync.metrics import provider_api_call_latency_seconds, provider_api_call_total
from caresync.models.sessions import ProviderKind
from caresync.utils.config import get_settings
from caresync.utils.error_handling import NetworkError
from caresync.utils.logging_utils import redact_sensitive_data
from caresync.utils.timestamps import Clock, utc_now

logger = logging.getLogger(__name__)


class SyncResult(BaseModel):
    """Outcome of one provider sync for one owner."""

    provider: ProviderKind
    synced: int = 0
    skipped: int = 0


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ProviderHttpClient:
    """
    Base for provider clients: owns the httpx client, logs redacted
    request/response pairs and records call metrics. Transport failures and
    timeouts surface as NetworkError; status handling is left to subclasses.
    """

    kind: ProviderKind

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, clock: Optional[Clock] = None):
        timeout = get_settings().request_timeout_seconds
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self.clock = clock or utc_now

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        correlation_id: Optional[str] = None,
        **kwargs: Any
    ) -> httpx.Response:
        correlation_id = correlation_id or str(uuid.uuid4())
        provider = self.kind.value
        logger.info(
            f"{provider} API request",
            extra={
                "log_type": "request",
                "correlation_id": correlation_id,
                "provider": provider,
                "method": method,
                "operation": operation,
                "headers": redact_sensitive_data(kwargs.get("headers") or {}),
                "body": redact_sensitive_data(kwargs.get("json") or kwargs.get("data")),
            }
        )
        start = time.monotonic()
        status = "error"
        try:
            response = await getattr(self._client, method.lower())(url, **kwargs)
            status = "success" if response.status_code < 400 else "error"
        except httpx.TimeoutException as e:
            raise NetworkError(f"{operation} timed out", provider) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{operation} failed: {e}", provider) from e
        finally:
            latency = time.monotonic() - start
            provider_api_call_latency_seconds.labels(provider=provider, operation=operation).observe(latency)
            provider_api_call_total.labels(provider=provider, operation=operation, status=status).inc()

        body = _response_body(response)
        logger.info(
            f"{provider} API response",
            extra={
                "log_type": "response",
                "correlation_id": correlation_id,
                "provider": provider,
                "operation": operation,
                "status_code": response.status_code,
                # Readings can be large; only the size is logged for list payloads
                "body": redact_sensitive_data(body) if not isinstance(body, list) else f"<{len(body)} records>",
                "latency": latency,
            }
        )
        return response

    def _unexpected_status(self, response: httpx.Response, operation: str) -> NetworkError:
        return NetworkError(
            f"{operation} returned HTTP {response.status_code}",
            self.kind.value,
            status_code=response.status_code,
        )

    @staticmethod
    def json_body(response: httpx.Response) -> Dict[str, Any]:
        body = _response_body(response)
        return body if isinstance(body, dict) else {}
