import pytest

from gentask.adapters.retry_tenacity import TenacityRetryAdapter
from gentask.core.exceptions import ProviderError, TransportError
from gentask.core.managers.failure_classifier import is_transient


class Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        self.args = args
        self.kwargs = kwargs
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    fn = Flaky([TransportError("t", status=502), TransportError("t", status=504)])
    adapter = TenacityRetryAdapter(attempts=3, wait_initial=0, wait_max=0)

    assert await adapter.execute(fn, "a", key="v") == "ok"
    assert fn.calls == 3
    # call-time kwargs reach the wrapped function, retry kwargs do not
    assert fn.args == ("a",)
    assert fn.kwargs == {"key": "v"}


@pytest.mark.asyncio
async def test_gives_up_after_attempts_and_reraises_last_error():
    errors = [TransportError(f"fail {i}", status=502) for i in range(5)]
    fn = Flaky(errors)
    adapter = TenacityRetryAdapter()

    with pytest.raises(TransportError) as excinfo:
        await adapter.execute(fn, attempts=4, fixed_wait=0)
    assert fn.calls == 4
    assert excinfo.value.message == "fail 3"


@pytest.mark.asyncio
async def test_retry_if_stops_on_terminal_errors():
    fn = Flaky([ProviderError("bad request", status=400)])
    adapter = TenacityRetryAdapter(attempts=5, fixed_wait=0)

    with pytest.raises(ProviderError):
        await adapter.execute(fn, retry_if=is_transient)
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_exception_types_limit_what_is_retried():
    fn = Flaky([KeyError("nope"), KeyError("nope")])
    adapter = TenacityRetryAdapter(attempts=3, fixed_wait=0, exception_types=(ValueError,))

    with pytest.raises(KeyError):
        await adapter.execute(fn)
    assert fn.calls == 1
