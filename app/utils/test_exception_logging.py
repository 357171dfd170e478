import logging
from unittest.mock import Mock

import httpx
import pytest

from app.utils import redact_url
from app.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)


class BrokenStrException(Exception):
    """An exception that breaks when __str__ is called."""

    def __str__(self):
        raise RuntimeError("Cannot convert to string!")

    def __repr__(self):
        return "BrokenStrException(cannot convert to string)"


class BrokenReprException(Exception):
    """An exception that breaks when both __str__ and __repr__ are called."""

    def __str__(self):
        raise RuntimeError("Cannot convert to string!")

    def __repr__(self):
        raise RuntimeError("Cannot convert to repr!")


def _upstream_error(url: str) -> httpx.ConnectError:
    return httpx.ConnectError("connection refused", request=httpx.Request("GET", url))


class TestFormatExceptionMessage:
    def test_type_and_message(self):
        assert format_exception_message(ValueError("bad")) == "ValueError: bad"

    def test_empty_message(self):
        assert format_exception_message(httpx.ReadTimeout("")) == "ReadTimeout"

    def test_none(self):
        assert format_exception_message(None) == "None"

    def test_broken_str_falls_back_to_repr(self):
        result = format_exception_message(BrokenStrException())
        assert result == (
            "BrokenStrException: BrokenStrException(cannot convert to string)"
        )

    def test_broken_str_and_repr(self):
        result = format_exception_message(BrokenReprException())
        assert result.startswith("BrokenReprException: <BrokenReprException object")


class TestLogExceptionWithDetails:
    """Test cases for log_exception_with_details function."""

    def setup_method(self):
        self.logger = Mock(spec=logging.Logger)

    def test_normal_exception_logging(self):
        exception = ValueError("Normal test error")

        log_exception_with_details(self.logger, "[TEST]", exception)

        self.logger.log.assert_called_once_with(
            logging.ERROR,
            "[TEST] ValueError: Normal test error",
            exc_info=exception,
        )

    def test_custom_level(self):
        exception = httpx.ReadTimeout("timed out")

        log_exception_with_details(self.logger, "[TEST]", exception, logging.WARNING)

        assert self.logger.log.call_args[0][0] == logging.WARNING

    def test_request_url_appended_and_redacted(self):
        exception = _upstream_error("https://example.com/a?token=secret")

        log_exception_with_details(self.logger, "[Proxy]", exception)

        message = self.logger.log.call_args[0][1]
        assert message.endswith("(url: https://example.com/a?<redacted>)")
        assert "secret" not in message

    def test_error_without_request(self):
        exception = httpx.ConnectError("connection refused")

        log_exception_with_details(self.logger, "[Proxy]", exception)

        assert "(url:" not in self.logger.log.call_args[0][1]

    def test_logger_failure_resilience(self):
        broken_logger = Mock(spec=logging.Logger)
        broken_logger.log.side_effect = RuntimeError("Logger is broken!")

        try:
            log_exception_with_details(broken_logger, "[TEST]", ValueError("x"))
        except RuntimeError:
            pytest.fail("Should not propagate logger exceptions")

    def test_exc_info_rejected_retries_plain(self):
        self.logger.log.side_effect = [TypeError("no exc_info"), None]

        log_exception_with_details(self.logger, "[TEST]", ValueError("x"))

        assert self.logger.log.call_count == 2
        assert self.logger.log.call_args_list[1][0] == (
            logging.ERROR,
            "[TEST] ValueError: x",
        )


class TestRedactUrl:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://example.com/a", "https://example.com/a"),
            ("https://example.com/a?b=1", "https://example.com/a?<redacted>"),
            ("https://example.com/a#frag", "https://example.com/a?<redacted>"),
            ("", ""),
        ],
    )
    def test_redaction(self, url, expected):
        assert redact_url(url) == expected
