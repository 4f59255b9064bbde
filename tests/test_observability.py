import json
import logging

from observability.logging import ContextFilter, JsonFormatter, clear_context, set_run_context
from observability.tracing import trace_operation


def _record(message: str = "Story created | id=%d", args=(7,), level=logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("pipeline", level, "pipeline.py", 10, message, args, None)


def test_context_filter_and_json_formatter() -> None:
    set_run_context("ab12cd34", user_id="alice")
    try:
        record = _record()
        ContextFilter().filter(record)
        data = json.loads(JsonFormatter().format(record))
    finally:
        clear_context()

    assert data["message"] == "Story created | id=7"
    assert data["run_id"] == "ab12cd34"
    assert data["user_id"] == "alice"
    assert "source" not in data


def test_json_formatter_includes_source_for_warnings_and_extras() -> None:
    record = _record("Rate limit hit", (), logging.WARNING)
    record.operation = "extraction"
    ContextFilter().filter(record)

    data = json.loads(JsonFormatter().format(record))

    assert data["run_id"] == "-"
    assert data["source"]["file"] == "pipeline.py"
    assert data["operation"] == "extraction"


def test_trace_operation_without_tracing_yields_attrs() -> None:
    with trace_operation("pipeline.run", {"run_id": "x"}) as attrs:
        attrs["processed"] = 3

    assert attrs == {"processed": 3}
