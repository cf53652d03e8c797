"""
Fixed-delay retry policies for the operator's long running steps.

A policy is a plain value (attempts, delay) handed to the code that needs
it; the retry loop itself is tenacity's.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay: float

    def executor(
        self,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        logger: Optional[logging.Logger] = None,
        description: str = "operation",
    ) -> AsyncRetrying:
        def _log_retry(state: RetryCallState) -> None:
            if logger is None or state.outcome is None:
                return
            logger.warning(
                f"{description} failed (attempt {state.attempt_number}/{self.max_attempts}): "
                f"{state.outcome.exception()}, retrying in {self.delay}s"
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(retry_on),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def run(
        self,
        func: Callable[[], Awaitable[T]],
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        logger: Optional[logging.Logger] = None,
        description: str = "operation",
    ) -> T:
        """Await ``func()`` until it succeeds or the attempts are exhausted."""
        async for attempt in self.executor(retry_on, logger, description):
            with attempt:
                return await func()
        raise AssertionError("unreachable: tenacity reraises on the last attempt")
