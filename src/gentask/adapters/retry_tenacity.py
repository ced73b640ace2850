from typing import Any, Awaitable, Callable, Optional, Sequence, Type

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from gentask.core.settings import logger


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.debug(
        f"[retry] attempt={retry_state.attempt_number} failed "
        f"fn={getattr(retry_state.fn, '__name__', '?')} wait={wait:.2f}s err={exc}"
    )


class TenacityRetryAdapter:
    """Tenacity-based retry adapter implementing RetryPort.

    Exponential backoff by default; ``fixed_wait`` switches to a constant
    delay. Call-time kwargs override the defaults (attempts, wait_initial,
    wait_max, fixed_wait, exception_types, retry_if).
    """

    def __init__(
        self,
        attempts: int = 3,
        wait_initial: float = 0.2,
        wait_max: float = 1.0,
        exception_types: Sequence[Type[Exception]] = (Exception,),
        fixed_wait: Optional[float] = None,
    ) -> None:
        self.attempts = attempts
        self.wait_initial = wait_initial
        self.wait_max = wait_max
        self.exception_types = tuple(exception_types)
        self.fixed_wait = fixed_wait

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        attempts = kwargs.pop("attempts", self.attempts)
        wait_initial = kwargs.pop("wait_initial", self.wait_initial)
        wait_max = kwargs.pop("wait_max", self.wait_max)
        fixed = kwargs.pop("fixed_wait", self.fixed_wait)
        exception_types = tuple(kwargs.pop("exception_types", self.exception_types))
        retry_if: Optional[Callable[[BaseException], bool]] = kwargs.pop("retry_if", None)

        if retry_if is not None:
            retry = retry_if_exception(
                lambda exc: isinstance(exc, exception_types) and retry_if(exc)
            )
        else:
            retry = retry_if_exception_type(exception_types)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(fixed) if fixed is not None else wait_exponential(multiplier=wait_initial, max=wait_max),
            retry=retry,
            before_sleep=_log_before_sleep,
            reraise=True,
        )
        async for attempt in retrying:  # pragma: no cover - control flow instrumentation
            with attempt:
                return await func(*args, **kwargs)
