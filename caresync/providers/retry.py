"""Named, bounded retry policies for provider calls."""

import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from caresync.utils.error_handling import SessionExpiredError

logger = logging.getLogger(__name__)

RetryHook = Callable[[int, Optional[BaseException]], Awaitable[None]]


class RetryPolicy:
    """
    Runs an operation up to `max_attempts` times.

    An attempt qualifies for another try when it raises one of `retry_on`, or
    when it returns a result for which `retry_on_result` is true. Before each
    further attempt `on_retry(attempt, error)` is awaited; `error` is None when
    the retry was triggered by the result. Once attempts are exhausted the last
    exception is raised, or the last result returned.
    """

    def __init__(
        self,
        name: str,
        max_attempts: int,
        retry_on: Tuple[Type[BaseException], ...] = (),
        retry_on_result: Optional[Callable[[Any], bool]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.name = name
        self.max_attempts = max_attempts
        self.retry_on = retry_on
        self.retry_on_result = retry_on_result

    async def execute(self, operation: Callable[[], Awaitable[Any]], on_retry: Optional[RetryHook] = None) -> Any:
        attempt = 1
        while True:
            try:
                result = await operation()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                error: Optional[BaseException] = e
            else:
                if self.retry_on_result is None or not self.retry_on_result(result) or attempt >= self.max_attempts:
                    return result
                error = None

            attempt += 1
            logger.warning(
                f"Retrying under policy {self.name}",
                extra={
                    "log_type": "retry",
                    "policy": self.name,
                    "attempt": attempt,
                    "reason": type(error).__name__ if error else "result",
                }
            )
            if on_retry is not None:
                await on_retry(attempt, error)


# One re-authentication when Share rejects the session outright.
SHARE_SESSION_EXPIRY_POLICY = RetryPolicy(
    name="share_session_expiry",
    max_attempts=2,
    retry_on=(SessionExpiredError,),
)

# One re-authentication when a fetch succeeds with zero records, since Share
# also expires sessions silently.
SHARE_EMPTY_RESULT_POLICY = RetryPolicy(
    name="share_empty_result",
    max_attempts=2,
    retry_on_result=lambda records: not records,
)
