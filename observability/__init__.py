"""Logging and optional tracing for the digest pipeline.

setup_logging / set_run_context / clear_context:
    Console and rotating-file logging with run and user context.

setup_tracing / trace_operation:
    Optional Logfire spans with PydanticAI instrumentation.

Example:
    >>> from observability import setup_logging, trace_operation
    >>> setup_logging(config)
    >>> with trace_operation("pipeline.run"):
    ...     pass
"""

from observability.logging import clear_context, set_run_context, setup_logging
from observability.tracing import TracingContext, setup_tracing, trace_operation

__all__ = [
    "clear_context",
    "set_run_context",
    "setup_logging",
    "TracingContext",
    "setup_tracing",
    "trace_operation",
]
