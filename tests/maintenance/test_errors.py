"""Error classification and per-call retry policies."""

from __future__ import annotations

import warnings

import httpx
import pytest

from ExtRegistry.Maintenance.errors import (
    DataIntegrityError,
    IOOperation,
    SizeLimitError,
    TransientIOError,
    UnknownJobKindError,
    create_io_retry_policy,
    is_retryable,
    is_terminal_error_message,
)
from ExtRegistry.Maintenance.errors.tenacity_policies import is_transient_io_error


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://store.example/blob")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestClassification:
    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status(self, status):
        assert is_transient_io_error(_status_error(status)) is True

    def test_not_found_status(self):
        assert is_transient_io_error(_status_error(404)) is False

    def test_os_errors(self):
        assert is_transient_io_error(ConnectionResetError()) is True
        assert is_transient_io_error(TimeoutError()) is True
        assert is_transient_io_error(FileNotFoundError()) is False
        assert is_transient_io_error(PermissionError()) is False
        assert is_transient_io_error(ValueError()) is False

    def test_job_level_retry(self):
        assert is_retryable(TransientIOError("store timed out"))
        assert is_retryable(RuntimeError("boom"))
        assert not is_retryable(DataIntegrityError("no download"))
        assert not is_retryable(SizeLimitError("too big", entry="a", size=2, limit=1))
        assert not is_retryable(UnknownJobKindError("nope"))

    def test_terminal_error_message(self):
        assert is_terminal_error_message("DataIntegrityError: no download")
        assert not is_terminal_error_message("TransientIOError: timed out")
        assert not is_terminal_error_message(None)


class TestRetryPolicy:
    def test_building_a_policy_emits_no_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            policy = create_io_retry_policy(IOOperation.UPLOAD, initial_wait_seconds=0.25)
        assert policy.wait.multiplier == 0.25

    def test_recovers_from_one_reset(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise ConnectionResetError("reset by peer")
            return "ok"

        policy = create_io_retry_policy(IOOperation.FETCH, initial_wait_seconds=0)
        assert policy(flaky) == "ok"
        assert len(calls) == 2

    def test_missing_blob_is_not_retried(self):
        calls = []

        def missing():
            calls.append(1)
            raise FileNotFoundError("blob")

        policy = create_io_retry_policy(IOOperation.FETCH, initial_wait_seconds=0)
        with pytest.raises(FileNotFoundError):
            policy(missing)
        assert len(calls) == 1
