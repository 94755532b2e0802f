"""Tests for logging helpers."""

import logging

import pytest

from wideevent.core.logs import log_exception


class TestLogException:
    """Tests for log_exception()."""

    @pytest.mark.core
    def test_logs_error_with_traceback_and_attributes(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.ERROR, logger="wideevent"):
            try:
                raise RuntimeError("store down")
            except RuntimeError:
                log_exception("Failed to store event", project="proj_1")

        record = caplog.records[-1]
        assert record.name == "wideevent"
        assert record.levelno == logging.ERROR
        assert record.getMessage() == "Failed to store event"
        assert record.exc_info is not None
        assert record.attributes == {"project": "proj_1"}
