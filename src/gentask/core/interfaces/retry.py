from typing import Any, Awaitable, Callable, Protocol


class RetryPort(Protocol):
    """Retries an async call until it succeeds or the attempts run out.

    Used for remote submission (fixed delay between attempts) and for
    artifact download/upload during archival (exponential backoff).
    Call-time keyword overrides, all optional and never forwarded to
    ``func``:

    - ``attempts``: total number of calls, including the first
    - ``wait_initial`` / ``wait_max``: exponential backoff bounds in seconds
    - ``fixed_wait``: constant delay in seconds; replaces the backoff
    - ``exception_types``: exception classes eligible for a retry
    - ``retry_if``: predicate on the raised exception; False stops at once

    The last exception propagates unchanged once retrying stops.
    """

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:  # pragma: no cover - protocol
        ...
