"""JSON log lines, request context and handler setup in school_kernel.logging_config."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from school_kernel.exceptions import StudentNotFoundError
from school_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _unconfigured():
    """Tests install their own handler; the suite's DEBUG setup is put back after."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _buffer_handler() -> tuple[logging.Handler, StringIO]:
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(StructuredFormatter())
    return handler, buffer


@pytest.fixture
def emitted():
    """Configure at INFO into a buffer; calling the fixture returns parsed lines."""
    handler, buffer = _buffer_handler()
    configure_logging(handler=handler)
    return lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]


class TestStructuredFormatter:

    def test_one_json_object_per_record(self, emitted):
        get_logger("test").info("receipt_issued")

        (line,) = emitted()
        assert line["message"] == "receipt_issued"
        assert line["level"] == "INFO"
        assert line["logger"] == "school_kernel.test"
        assert line["ts"].endswith("+00:00")

    def test_uuid_and_decimal_extras_are_strings(self, emitted):
        student_id = uuid4()
        get_logger("test").info(
            "payment_recorded",
            extra={"student_id": student_id, "amount": Decimal("500.00"), "seq": 7},
        )

        (line,) = emitted()
        assert line["student_id"] == str(student_id)
        assert line["amount"] == "500.00"
        assert line["seq"] == 7

    def test_bound_context_is_attached(self, emitted):
        LogContext.set(school_id="greenfield", batch_id="b-1")
        get_logger("test").info("promotion_batch_started")

        (line,) = emitted()
        assert (line["school_id"], line["batch_id"]) == ("greenfield", "b-1")
        assert "student_id" not in line

    def test_kernel_error_code_and_attributes(self, emitted):
        try:
            raise StudentNotFoundError("abc")
        except StudentNotFoundError:
            get_logger("test").error("lookup_failed", exc_info=True)

        (line,) = emitted()
        assert line["exc_type"] == "StudentNotFoundError"
        assert line["exc_code"] == "STUDENT_NOT_FOUND"
        assert line["exc_student_id"] == "abc"
        assert "StudentNotFoundError" in line["traceback"]

    def test_password_in_url_extra_is_masked(self, emitted):
        get_logger("test").info(
            "ledger_initialized",
            extra={"database_url": "postgresql://bursar:s3cret@db:5432/school"},
        )

        (line,) = emitted()
        assert line["database_url"] == "postgresql://bursar:***@db:5432/school"

    def test_info_level_drops_debug(self, emitted):
        logger = get_logger("services.balance")
        logger.debug("term_balance_computed")
        logger.info("payment_recorded")
        logger.warning("carry_forward_unapplied")

        assert [line["message"] for line in emitted()] == [
            "payment_recorded",
            "carry_forward_unapplied",
        ]


class TestLogContext:

    def test_none_values_are_skipped(self):
        LogContext.set(school_id="s", actor_id="a", student_id=None)

        assert LogContext.get_all() == {"school_id": "s", "actor_id": "a"}

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(receipt_number="RCP-1")

    def test_bind_is_scoped(self):
        LogContext.set(actor_id="bursar")
        with LogContext.bind(actor_id="admin", batch_id="b"):
            assert LogContext.get_all() == {"actor_id": "admin", "batch_id": "b"}

        assert LogContext.get_all() == {"actor_id": "bursar"}

    def test_clear_empties_context(self):
        LogContext.set(correlation_id="req-9")
        LogContext.clear()

        assert LogContext.get_all() == {}


class TestConfigureLogging:

    def test_second_call_is_ignored(self):
        first, _ = _buffer_handler()
        second, _ = _buffer_handler()
        configure_logging(handler=first)
        configure_logging(handler=second, level=logging.DEBUG)

        kernel = logging.getLogger("school_kernel")
        assert kernel.handlers == [first]
        assert kernel.level == logging.INFO
        assert kernel.propagate is False

    def test_level_by_name(self):
        handler, buffer = _buffer_handler()
        configure_logging(handler=handler, level="debug")
        get_logger("services.promotion").debug("student_promoted")

        line = json.loads(buffer.getvalue().splitlines()[0])
        assert line["logger"] == "school_kernel.services.promotion"
        assert line["message"] == "student_promoted"
