import json
import logging

from partsync.utils.logging import (
    JSONFormatter, RunContext, configure_logging, get_run_id
)


def _record(msg="hello", **extra):
    logger = logging.getLogger("partsync.test")
    return logger.makeRecord(
        logger.name, logging.WARNING, __file__, 10, msg, (), None, extra=extra or None
    )


def test_json_formatter_includes_extra_fields():
    payload = json.loads(JSONFormatter().format(_record(database="sales", collection="orders")))

    assert payload["message"] == "hello"
    assert payload["level"] == "WARNING"
    assert payload["database"] == "sales"
    assert payload["collection"] == "orders"
    assert "run_id" not in payload


def test_run_context_stamps_run_id():
    with RunContext("run-123") as run_id:
        assert run_id == "run-123"
        payload = json.loads(JSONFormatter().format(_record()))
        assert payload["run_id"] == "run-123"

    assert get_run_id() is None


def test_run_context_restores_outer_id():
    with RunContext("outer"):
        with RunContext() as inner:
            assert get_run_id() == inner
        assert get_run_id() == "outer"


def test_configure_logging_replaces_handlers():
    logger = logging.getLogger("partsync")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    try:
        configure_logging("DEBUG", json_format=True)
        configure_logging("DEBUG", json_format=False)

        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.DEBUG
    finally:
        logger.handlers[:] = saved[0]
        logger.setLevel(saved[1])
        logger.propagate = saved[2]
