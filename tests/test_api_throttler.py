# tests/test_api_throttler.py

import httpx
import openai
import pytest

from exam_ai_core.api_throttler import ApiThrottler, ThrottlerError

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _throttler(sleeps, max_retries=4):
    return ApiThrottler(min_interval=0.0, max_retries=max_retries, max_wait=10.0, sleep=sleeps.append)


def _flaky(errors, result="ok"):
    calls = []

    def fn(*args, **kwargs):
        calls.append((args, kwargs))
        if len(calls) <= len(errors):
            raise errors[len(calls) - 1]
        return result

    return fn, calls


def test_retries_transient_errors_then_succeeds():
    sleeps = []
    fn, calls = _flaky([openai.APITimeoutError(request=REQUEST), openai.APIConnectionError(request=REQUEST)])

    assert _throttler(sleeps).call(fn, "x", throttle_key="gpt", model="gpt") == "ok"
    assert len(calls) == 3
    assert calls[-1] == (("x",), {"model": "gpt"}), "throttle_key must not leak into the call"
    assert len(sleeps) == 2


def test_rate_limit_honours_retry_after():
    sleeps = []
    response = httpx.Response(429, headers={"Retry-After": "3"}, request=REQUEST)
    fn, _ = _flaky([openai.RateLimitError("slow down", response=response, body=None)])

    assert _throttler(sleeps).call(fn) == "ok"
    assert sleeps == [3.0]


def test_exhausted_retries_raise_throttler_error():
    sleeps = []
    errors = [openai.APITimeoutError(request=REQUEST) for _ in range(3)]
    fn, calls = _flaky(errors)

    with pytest.raises(ThrottlerError) as exc:
        _throttler(sleeps, max_retries=3).call(fn)
    assert exc.value.attempts == 3
    assert isinstance(exc.value.last_exception, openai.APITimeoutError)
    assert len(calls) == 3
    assert len(sleeps) == 2, "no backoff after the final attempt"


def test_non_retryable_api_error_is_reraised():
    response = httpx.Response(400, request=REQUEST)
    fn, calls = _flaky([openai.BadRequestError("bad request", response=response, body=None)])

    with pytest.raises(openai.BadRequestError):
        _throttler([]).call(fn)
    assert len(calls) == 1


def test_server_error_is_retried():
    response = httpx.Response(503, request=REQUEST)
    fn, calls = _flaky([openai.InternalServerError("unavailable", response=response, body=None)])

    assert _throttler([]).call(fn) == "ok"
    assert len(calls) == 2


def test_unexpected_error_stops_immediately():
    fn, calls = _flaky([RuntimeError("boom")] * 5)

    with pytest.raises(ThrottlerError) as exc:
        _throttler([]).call(fn)
    assert exc.value.attempts == 1
    assert isinstance(exc.value.last_exception, RuntimeError)
    assert len(calls) == 1


def test_min_interval_between_calls():
    sleeps = []
    throttler = ApiThrottler(min_interval=60.0, max_retries=1, sleep=sleeps.append)

    throttler.call(lambda: 1, throttle_key="a")
    throttler.call(lambda: 2, throttle_key="b")
    assert sleeps == [], "first call per key never waits"

    throttler.call(lambda: 3, throttle_key="a")
    assert len(sleeps) == 1
    assert 0 < sleeps[0] <= 60.0


def test_invalid_max_retries():
    with pytest.raises(ValueError):
        ApiThrottler(max_retries=0)
