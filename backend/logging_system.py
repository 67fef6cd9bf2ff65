"""
Residency Desk — Request-scoped logging context

Correlation IDs carried through asyncio tasks with a context var, and a
logging.Filter that stamps them onto every record so the lifecycle, audit
and dispatch loggers can be joined back to the HTTP request that caused them.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Any
import contextvars
import logging
import time
import uuid


@dataclass
class RequestContext:
    """Context for request tracing"""
    request_id: str
    correlation_id: str
    user_id: Optional[str] = None
    start_time: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def create(
        request_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> "RequestContext":
        request_id = request_id or str(uuid.uuid4())
        return RequestContext(
            request_id=request_id,
            correlation_id=correlation_id or request_id,
            user_id=user_id,
        )

    @property
    def elapsed_ms(self) -> float:
        return (time.time() - self.start_time) * 1000


# Async-safe context var (works with FastAPI/asyncio)
_context_var: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def get_current_context() -> Optional[RequestContext]:
    return _context_var.get()


def set_current_context(context: RequestContext) -> contextvars.Token:
    return _context_var.set(context)


def reset_current_context(token: contextvars.Token) -> None:
    _context_var.reset(token)


def current_request_id() -> Optional[str]:
    ctx = _context_var.get()
    return ctx.request_id if ctx else None


class RequestContextFilter(logging.Filter):
    """Adds request_id / correlation_id attributes to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _context_var.get()
        record.request_id = ctx.request_id[:8] if ctx else "-"
        record.correlation_id = ctx.correlation_id if ctx else "-"
        return True


def install_request_filter(logger_name: str = "") -> RequestContextFilter:
    """Attach the context filter to every handler of the named logger.

    Filters on handlers (rather than loggers) also see records propagated
    from child loggers such as ``residency-desk.lifecycle``.
    """
    context_filter = RequestContextFilter()
    for handler in logging.getLogger(logger_name).handlers:
        handler.addFilter(context_filter)
    return context_filter
