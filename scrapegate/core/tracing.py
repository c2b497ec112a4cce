"""Sentry performance spans around routing, fetch and extraction.

Span creation and teardown never raise into the scrape path: when Sentry
is not initialised the SDK hands back no-op spans, and any SDK error is
logged at debug level and ignored.
"""

import logging
from contextlib import contextmanager

import sentry_sdk

logger = logging.getLogger(__name__)


class _NullSpan:
    def set_data(self, key, value):
        pass

    def set_status(self, status):
        pass


@contextmanager
def trace_span(op: str, name: str, **data):
    """Wrap a block in a Sentry span, tagging it ok/internal_error on exit."""
    try:
        span = sentry_sdk.start_span(op=op, name=name)
        span.__enter__()
        for key, value in data.items():
            span.set_data(key, value)
    except Exception as e:
        logger.debug(f"Span start failed for {op}: {e}")
        yield _NullSpan()
        return

    try:
        yield span
    except BaseException as exc:
        _finish(span, "internal_error", exc)
        raise
    else:
        _finish(span, "ok", None)


def _finish(span, status: str, exc: BaseException | None):
    try:
        span.set_status(status)
        if exc is None:
            span.__exit__(None, None, None)
        else:
            span.__exit__(type(exc), exc, exc.__traceback__)
    except Exception as e:
        logger.debug(f"Span finish failed: {e}")
