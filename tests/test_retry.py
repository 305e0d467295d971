import pytest

from manga_sync.api.base import APIError
from manga_sync.sync.retry import RetryExhaustedError, backoff_seconds, is_rate_limited, with_retry

from conftest import rate_limited, server_error


class FlakyOperation:
    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_rate_limited_failures_back_off_by_the_minute(sleeper):
    operation = FlakyOperation([rate_limited(), rate_limited()])

    assert with_retry(operation, "fetchPopularManga", 3, sleep=sleeper) == "ok"

    assert operation.calls == 3
    assert sleeper.calls == [60, 120]


def test_other_failures_back_off_for_seconds(sleeper):
    operation = FlakyOperation([server_error(), APIError("Connection error: reset")])

    assert with_retry(operation, "One Piece", 3, sleep=sleeper) == "ok"

    assert sleeper.calls == [2, 4]


def test_mixed_failures_pick_backoff_per_attempt(sleeper):
    operation = FlakyOperation([server_error(), rate_limited()])

    with_retry(operation, "mixed", 3, sleep=sleeper)

    assert sleeper.calls == [2, 120]


def test_exhaustion_raises_after_exactly_max_attempts(sleeper):
    last = server_error()
    operation = FlakyOperation([server_error(), server_error(), server_error(), last, server_error()])

    with pytest.raises(RetryExhaustedError) as exc_info:
        with_retry(operation, "Berserk ch.1", 4, sleep=sleeper)

    assert operation.calls == 4
    # No wait after the final attempt
    assert sleeper.calls == [2, 4, 6]
    assert exc_info.value.label == "Berserk ch.1"
    assert exc_info.value.attempts == 4
    assert exc_info.value.last_error is last
    assert exc_info.value.__cause__ is last


def test_single_attempt_never_sleeps(sleeper):
    operation = FlakyOperation([rate_limited()])

    with pytest.raises(RetryExhaustedError):
        with_retry(operation, "once", 1, sleep=sleeper)

    assert operation.calls == 1
    assert sleeper.calls == []


def test_invalid_attempt_budget():
    with pytest.raises(ValueError):
        with_retry(lambda: None, "nothing", 0)


def test_is_rate_limited_reads_response_status():
    class Response:
        status_code = 429

    class HTTPError(Exception):
        response = Response()

    assert is_rate_limited(rate_limited())
    assert is_rate_limited(HTTPError())
    assert not is_rate_limited(server_error())
    assert not is_rate_limited(RuntimeError("boom"))


def test_backoff_seconds_scales_with_attempt():
    assert [backoff_seconds(rate_limited(), n) for n in (1, 2, 3)] == [60, 120, 180]
    assert [backoff_seconds(server_error(), n) for n in (1, 2, 3)] == [2, 4, 6]
