"""
Test Buddy - Retry Executor
Exponential backoff with jitter and an overall deadline for store operations
"""
import asyncio
import logging
import random
from dataclasses import dataclass, fields, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from testbuddy.core.config import Settings
from testbuddy.core.errors import ErrorKind, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff configuration. All durations are in seconds.

    ``timeout`` bounds the whole retry loop, sleeps included.
    """
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True
    timeout: float = 60.0

    def merge(self, overrides: Optional[Dict[str, Any]] = None, **kwargs: Any) -> "RetryPolicy":
        """Return a copy with the given fields replaced (``None`` values ignored)."""
        values = {**(overrides or {}), **kwargs}
        known = {f.name for f in fields(self)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown retry options: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in values.items() if v is not None})

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Backoff before retrying after failed ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.initial_delay * self.backoff_factor ** (attempt - 1))
        if self.jitter:
            delay *= rng()
        return delay

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            backoff_factor=settings.RETRY_BACKOFF_FACTOR,
            jitter=settings.RETRY_JITTER,
            timeout=settings.RETRY_TIMEOUT,
        )


@dataclass
class LabelledOperation:
    """An operation plus the label and policy to run it with."""
    operation: Operation
    label: str = "Firebase operation"
    policy: Optional[RetryPolicy] = None


class RetryExecutor:
    """
    Runs async operations with retry.

    Only retryable error kinds are retried; anything else is raised on the
    first failure. Every failure leaves as a ``StoreError``.
    """

    def __init__(
        self,
        default_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.default_policy = default_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self,
        operation: Operation,
        policy: Optional[RetryPolicy] = None,
        label: str = "Firebase operation",
    ) -> T:
        """
        Run ``operation`` until it succeeds, fails permanently, or the
        policy's timeout elapses.

        Args:
            operation: Zero-argument coroutine function
            policy: Overrides the executor's default policy
            label: Name used in logs and error context

        Returns:
            Whatever the operation returns

        Raises:
            StoreError: classified failure of the last attempt, or a
                ``timeout`` error when the deadline passes first
        """
        policy = policy or self.default_policy
        state = {"attempt": 0}

        try:
            return await asyncio.wait_for(
                self._attempt_loop(operation, policy, label, state),
                timeout=policy.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"{label} timed out after {policy.timeout}s ({state['attempt']} attempts)")
            raise StoreError(
                ErrorKind.TIMEOUT,
                f"{label} timed out after {policy.timeout}s",
                cause=e,
                context={"operation": label, "attempt": state["attempt"]},
            ) from e

    async def _attempt_loop(
        self,
        operation: Operation,
        policy: RetryPolicy,
        label: str,
        state: Dict[str, int],
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            state["attempt"] = attempt
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = StoreError.from_exception(e)
                error.context.setdefault("operation", label)
                error.context["attempt"] = attempt

                if not error.retryable or attempt >= policy.max_attempts:
                    if error.retryable:
                        logger.error(f"{label} failed after {attempt} attempts: {error.message}")
                    if error is e:
                        raise
                    raise error from e

                delay = policy.delay_for(attempt, self._rng)
                logger.warning(
                    f"{label} failed (attempt {attempt}/{policy.max_attempts}, "
                    f"{error.kind.value}); retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

    async def execute_parallel(self, items: Sequence[LabelledOperation]) -> List[Any]:
        """Run operations concurrently; the first failure propagates."""
        return list(await asyncio.gather(*(
            self.execute(item.operation, item.policy, item.label) for item in items
        )))

    async def execute_sequence(self, items: Sequence[LabelledOperation]) -> List[Any]:
        """Run operations one after another, stopping at the first failure."""
        results = []
        for item in items:
            results.append(await self.execute(item.operation, item.policy, item.label))
        return results
