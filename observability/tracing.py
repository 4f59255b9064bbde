"""Optional Logfire tracing for pipeline runs and agent calls.

When enabled, Logfire is configured once per process and PydanticAI agent
calls are instrumented automatically. trace_operation opens a span around
a block of pipeline work; with tracing disabled it only logs the block's
duration at DEBUG.

Requirements:
    pip install logfire   (the 'tracing' extra)

Enable via configuration:
    ENABLE_LOGFIRE=true
    LOGFIRE_TOKEN=your-token  # Optional for cloud dashboard

Usage:
    >>> from observability.tracing import setup_tracing, trace_operation
    >>> setup_tracing(enabled=True, service_name="newsdigest")
    >>> with trace_operation("pipeline.run", {"run_id": run_id}) as attrs:
    ...     attrs["processed"] = 3
"""

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from observability.logging import set_trace_context

logger = logging.getLogger(__name__)


@dataclass
class TracingContext:
    """Process-wide tracing state."""
    enabled: bool = False
    service_name: str = "newsdigest"
    token: str = ""
    _logfire_configured: bool = field(default=False, init=False)

    @property
    def active(self) -> bool:
        return self.enabled and self._logfire_configured


_context = TracingContext()


def setup_tracing(
    enabled: bool = False,
    service_name: str = "newsdigest",
    token: str = "",
) -> TracingContext:
    """Configure Logfire and instrument PydanticAI.

    Tracing is disabled (with a warning) if logfire is not installed or
    fails to configure.
    """
    _context.enabled = enabled
    _context.service_name = service_name
    _context.token = token

    if not enabled:
        logger.debug("Tracing disabled")
        return _context

    try:
        import logfire

        logfire.configure(service_name=service_name, token=token or None)
        logfire.instrument_pydantic_ai()
        _context._logfire_configured = True
        logger.info("Logfire tracing enabled | service=%s", service_name)
    except ImportError:
        logger.warning("Logfire not installed (pip install 'newsdigest[tracing]'). Tracing disabled.")
        _context.enabled = False
    except Exception as e:
        logger.error("Failed to configure Logfire | error=%s", e)
        _context.enabled = False

    return _context


@contextmanager
def trace_operation(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[dict[str, Any], None, None]:
    """Span around a block of work.

    Yields a dict; anything stored in it is attached to the span when the
    block exits.
    """
    start = time.perf_counter()
    result_attrs: dict[str, Any] = {}
    try:
        if _context.active:
            import logfire

            with logfire.span(name, **(attributes or {})) as span:
                context = span.get_span_context() if hasattr(span, "get_span_context") else None
                if context is not None:
                    set_trace_context(format(context.trace_id, "032x"))
                yield result_attrs
                for key, value in result_attrs.items():
                    span.set_attribute(key, value)
        else:
            yield result_attrs
    finally:
        logger.debug("Operation finished | name=%s duration=%.2fs", name, time.perf_counter() - start)
