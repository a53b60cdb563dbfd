from __future__ import annotations

import json
import logging
import sys

from cloudstore.common.errors import TransportError
from cloudstore.common.logging import JsonFormatter, setup_logging


class TestLogging:
    def test_json_formatter_merges_extra(self):
        record = logging.LogRecord(
            "cloudstore.upload", logging.INFO, __file__, 1, "upload_committed", (), None
        )
        record.extra = {"container": "c1", "chunks": 3}

        payload = json.loads(JsonFormatter().format(record))

        assert payload == {
            "level": "INFO",
            "logger": "cloudstore.upload",
            "message": "upload_committed",
            "container": "c1",
            "chunks": 3,
        }

    def test_json_formatter_includes_exception(self):
        try:
            raise TransportError("connection reset")
        except TransportError:
            record = logging.LogRecord(
                "cloudstore.upload",
                logging.WARNING,
                __file__,
                1,
                "upload_abort_failed",
                (),
                sys.exc_info(),
            )

        payload = json.loads(JsonFormatter().format(record))

        assert "connection reset" in payload["exc_info"]

    def test_setup_logging_configures_package_loggers(self):
        try:
            setup_logging("DEBUG")

            package_logger = logging.getLogger("cloudstore")
            assert package_logger.level == logging.DEBUG
            assert isinstance(package_logger.handlers[0].formatter, JsonFormatter)
            assert logging.getLogger("cloudstore.registry").propagate is False
        finally:
            for name in ("cloudstore", "cloudstore.registry"):
                restored = logging.getLogger(name)
                restored.handlers.clear()
                restored.propagate = True
                restored.setLevel(logging.NOTSET)
