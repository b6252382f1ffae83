"""Utilities for tracing reconcile stages."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


trace: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "trace", default=()
)


def current_trace() -> str:
    """Return the current trace as a label, e.g. `serving/ks > install`."""
    return " > ".join(trace.get())


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Push a name onto the trace for the duration of the block.

    Enter and exit are logged at debug level with the elapsed time. The
    trace is kept in a context variable so concurrent reconciles of
    different instances do not mix their labels.
    """
    token = trace.set(trace.get() + (name,))
    label = current_trace()
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        t2 = perf_counter()
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, (t2 - t1))
