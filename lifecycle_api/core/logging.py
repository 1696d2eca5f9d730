from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional


# Per-request values stamped onto every log record
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
caller_id_var: ContextVar[Optional[str]] = ContextVar("caller_id", default=None)

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | cid=%(correlation_id)s | tenant=%(tenant_id)s | "
    "caller=%(caller_id)s | %(message)s"
)


class LoggingContextFilter(logging.Filter):
    """
    Copy correlation, tenant and caller ids from contextvars onto each record.

    Missing values are rendered as "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.correlation_id = correlation_id_var.get() or "-"
        record.tenant_id = tenant_id_var.get() or "-"
        record.caller_id = caller_id_var.get() or "-"
        return True


# PUBLIC_INTERFACE
@contextmanager
def request_log_context(
    correlation_id: Optional[str], tenant_id: Optional[str]
) -> Iterator[None]:
    """Bind correlation and tenant ids for the duration of one request."""
    corr_token = correlation_id_var.set(correlation_id)
    tenant_token = tenant_id_var.set(tenant_id)
    caller_token = caller_id_var.set(None)
    try:
        yield
    finally:
        caller_id_var.reset(caller_token)
        tenant_id_var.reset(tenant_token)
        correlation_id_var.reset(corr_token)


# PUBLIC_INTERFACE
def bind_caller(caller_id: Optional[str], tenant_id: Optional[str] = None) -> None:
    """Record the authenticated caller (and its tenant) for the rest of the request."""
    caller_id_var.set(caller_id)
    if tenant_id is not None:
        tenant_id_var.set(tenant_id)


# PUBLIC_INTERFACE
def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging with a structured format and context filter."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
    handler.addFilter(LoggingContextFilter())

    root = logging.getLogger()
    # Remove pre-existing default handlers configured elsewhere (e.g., basicConfig)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(level)
