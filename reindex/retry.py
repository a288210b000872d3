"""Central retry policy for embedding calls and index writes.

One policy object carries the attempt budget, the exponential backoff shape
and the rule deciding which failures are worth retrying. Call sites never
loop on their own.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from reindex.config import RetrySettings
from reindex.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Return True for errors flagged as transient (timeouts, 429, 5xx)."""
    return bool(getattr(exc, "transient", False))


class RetryPolicy:
    """Bounded exponential-backoff retry policy.

    The delay before retry ``n`` (1-based) is
    ``base_delay * multiplier ** (n - 1)``, capped at ``max_delay``.
    The final failure is re-raised unchanged.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
        retryable: Callable[[BaseException], bool] = is_transient,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the policy.

        Args:
            max_attempts: Attempts per call, including the first.
            base_delay: Delay before the first retry in seconds.
            multiplier: Growth factor applied per attempt.
            max_delay: Upper bound on any single delay.
            retryable: Predicate selecting the exceptions to retry.
            sleep: Coroutine used to wait between attempts. Defaults to
                tenacity's asyncio sleep.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.retryable = retryable
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: RetrySettings,
        retryable: Callable[[BaseException], bool] = is_transient,
    ) -> "RetryPolicy":
        """Build a policy from retry settings."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            multiplier=settings.multiplier,
            max_delay=settings.max_delay,
            retryable=retryable,
        )

    def _retrying(self) -> AsyncRetrying:
        kwargs: dict[str, Any] = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ),
            retry=retry_if_exception(self.retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
            **kwargs,
        )

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await ``fn(*args, **kwargs)`` under this policy.

        Raises:
            The last exception raised by ``fn`` once the policy gives up,
            or immediately for exceptions the policy does not retry.
        """
        return await self._retrying()(fn, *args, **kwargs)
