"""Unit tests for kitgc/retry_utils.py"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from kitgc.error_utils import ImageNotFoundError, RegistryError
from kitgc.retry_utils import RetryableErrorType, is_retryable_error, retry_with_backoff


@pytest.fixture
def sleep(mocker):
    return mocker.patch("kitgc.retry_utils.time.sleep")


class TestIsRetryableError:
    """Tests for error classification"""

    def test_connection_errors_are_network(self):
        assert is_retryable_error(requests.ConnectionError()) == (True, RetryableErrorType.NETWORK)
        assert is_retryable_error(requests.Timeout()) == (True, RetryableErrorType.NETWORK)

    def test_server_errors_are_temporary(self):
        assert is_retryable_error(RegistryError("get manifest", "r", "busy", 503)) == \
            (True, RetryableErrorType.TEMPORARY)
        assert is_retryable_error(RegistryError("get manifest", "r", "slow down", 429)) == \
            (True, RetryableErrorType.TEMPORARY)

    def test_client_errors_are_permanent(self):
        assert is_retryable_error(RegistryError("get manifest", "r", "denied", 403))[0] is False
        assert is_retryable_error(ImageNotFoundError("get manifest", "r"))[0] is False

    def test_plain_errors_are_permanent(self):
        assert is_retryable_error(ValueError("bad")) == (False, RetryableErrorType.PERMANENT)


class TestRetryWithBackoff:
    """Tests for the retry decorator"""

    def test_retries_until_success(self, sleep):
        func = MagicMock(side_effect=[requests.ConnectionError(), requests.ConnectionError(), "ok"])
        func.__name__ = "func"

        assert retry_with_backoff(max_retries=3, jitter=False)(func)() == "ok"
        assert func.call_count == 3
        assert [c[0][0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_delay_is_capped(self, sleep):
        func = MagicMock(side_effect=[requests.Timeout()] * 3 + ["ok"])
        func.__name__ = "func"

        retry_with_backoff(max_retries=3, initial_delay=5.0, max_delay=8.0, jitter=False)(func)()

        assert [c[0][0] for c in sleep.call_args_list] == [5.0, 8.0, 8.0]

    def test_gives_up_after_max_retries(self, sleep):
        func = MagicMock(side_effect=requests.ConnectionError("down"))
        func.__name__ = "func"

        with pytest.raises(requests.ConnectionError):
            retry_with_backoff(max_retries=2)(func)()
        assert func.call_count == 3

    def test_permanent_errors_are_not_retried(self, sleep):
        func = MagicMock(side_effect=RegistryError("put manifest", "r", "denied", 403))
        func.__name__ = "func"

        with pytest.raises(RegistryError):
            retry_with_backoff(max_retries=3)(func)()
        assert func.call_count == 1
        sleep.assert_not_called()
