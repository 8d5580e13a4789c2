import io
import json
import logging

import pytest

from advisorylock.logging_config import ContextJsonFormatter, setup_logging
from advisorylock.service import LockOutcome
from advisorylock.utils.logging_helpers import (
    LOCK_CONTEXT_KEYS,
    ContextLoggerAdapter,
    enforce_context,
    ensure_logger,
)


def _capture(name):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ContextJsonFormatter())

    logger = logging.getLogger(name)
    logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(logging.INFO)
    return logger, handler, stream


def _payload(logger, handler, stream):
    handler.flush()
    output = stream.getvalue().strip()
    logger.removeHandler(handler)
    assert output, "log output should not be empty"
    return json.loads(output)


def test_lock_fields_are_top_level_and_others_nested():
    logger, handler, stream = _capture("test.logging.formatter")

    logger.info(
        "structured message",
        extra={"lock_id": 42, "outcome": "ran", "stage": "startup", "error_type": "ExampleError"},
    )

    payload = _payload(logger, handler, stream)
    assert payload["lock_id"] == 42
    assert payload["outcome"] == "ran"
    assert payload["error_type"] == "ExampleError"
    assert payload["extra"] == {"stage": "startup"}
    assert payload["message"] == "structured message"
    assert payload["logger"] == "test.logging.formatter"
    assert payload["timestamp"].endswith("+00:00") or payload["timestamp"].endswith("Z")


def test_record_attributes_are_not_copied():
    logger, handler, stream = _capture("test.logging.attrs")

    logger.info("plain")

    payload = _payload(logger, handler, stream)
    assert set(payload) == {"timestamp", "level", "logger", "message"}


def test_outcome_enum_and_unencodable_values_serialise():
    logger, handler, stream = _capture("test.logging.encode")

    logger.info(
        "outcome recorded",
        extra={"outcome": LockOutcome.SKIPPED, "connection": object(), "components": ("a", "b")},
    )

    payload = _payload(logger, handler, stream)
    assert payload["outcome"] == "skipped"
    assert payload["extra"]["components"] == ["a", "b"]
    assert payload["extra"]["connection"].startswith("<object object")


def test_formatter_includes_exception_text():
    logger, handler, stream = _capture("test.logging.exception")

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.error("failed", exc_info=True)

    payload = _payload(logger, handler, stream)
    assert "RuntimeError: boom" in payload["exception"]


def test_adapter_emits_every_lock_context_key():
    logger, handler, stream = _capture("test.logging.adapter")

    adapter = ensure_logger(logger, "unused").bind(event_type="unit_test")
    adapter.info("adapter message", extra={"lock_id": 101})

    payload = _payload(logger, handler, stream)
    for key in LOCK_CONTEXT_KEYS:
        assert key in payload or key in payload["extra"]
    assert payload["event_type"] == "unit_test"
    assert payload["lock_id"] == 101
    assert payload["lock_key"] is None


def test_for_lock_binds_lock_identity():
    adapter = ensure_logger(None, "test.logging.for_lock").bind(component="reports")

    scoped = adapter.for_lock(-468727620, "process-orders")

    assert scoped.extra["lock_id"] == -468727620
    assert scoped.extra["lock_key"] == "process-orders"
    assert scoped.extra["component"] == "reports"
    assert adapter.extra["lock_id"] is None


def test_enforce_context_keeps_existing_context():
    base = logging.getLogger("test.logging.enforce")
    adapter = enforce_context(
        ensure_logger(base, "unused").bind(component="reports"), {"request_category": "startup"}
    )

    assert isinstance(adapter, ContextLoggerAdapter)
    assert adapter.logger is base
    assert adapter.extra["component"] == "reports"
    assert adapter.extra["request_category"] == "startup"
    assert set(LOCK_CONTEXT_KEYS) <= set(adapter.extra)


def test_enforce_context_accepts_plain_adapter():
    adapter = enforce_context(logging.LoggerAdapter(logging.getLogger("test.logging.plain"), None))

    assert set(LOCK_CONTEXT_KEYS) <= set(adapter.extra)


def test_child_carries_context():
    adapter = ensure_logger(logging.getLogger("test.logging.parent"), "unused").bind(component="jobs")

    child = adapter.getChild("worker")

    assert child.logger.name == "test.logging.parent.worker"
    assert child.extra["component"] == "jobs"


def test_ensure_logger_defaults_to_module_logger():
    adapter = ensure_logger(None, "advisorylock.example")

    assert adapter.logger.name == "advisorylock.example"
    assert adapter.extra["lock_id"] is None


def test_records_expose_context_to_caplog(caplog):
    adapter = ensure_logger(None, "test.logging.caplog").bind(component="reports")

    with caplog.at_level(logging.INFO, logger="test.logging.caplog"):
        adapter.info("hello", extra={"lock_id": 5})

    record = caplog.records[-1]
    assert record.component == "reports"
    assert record.lock_id == 5


@pytest.fixture
def pristine_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_sets_levels(pristine_root_logger):
    setup_logging(logging.INFO, debug_mode=True)

    assert pristine_root_logger.level == logging.DEBUG
    assert pristine_root_logger.handlers
    assert logging.getLogger("asyncpg").level == logging.INFO
    assert logging.getLogger("sqlalchemy.engine").level == logging.INFO
