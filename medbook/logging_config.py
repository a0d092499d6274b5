"""structlog setup and request-ID correlation.

Every module logs through ``get_logger(__name__)`` with an event name plus
keyword fields. ``setup_structured_logging`` routes those events through the
stdlib root logger as one JSON object per line.

The store client sends ``X-Request-ID`` on each call and the mock store echoes
it back (see :class:`RequestIDMiddleware`), so both sides of a request can be
matched up in the logs.
"""
import logging
import sys
import uuid

import structlog

from medbook import config

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_ENVIRON = "HTTP_" + REQUEST_ID_HEADER.upper().replace("-", "_")

_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.JSONRenderer(),
]


def setup_structured_logging(log_level: str = config.LOG_LEVEL):
    """Emit JSON lines on stdout at ``log_level`` (a stdlib level name)."""
    structlog.configure(
        processors=_PROCESSORS,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level.upper())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def generate_request_id() -> str:
    """``req-`` followed by 12 hex characters."""
    return "req-" + uuid.uuid4().hex[:12]


class RequestIDMiddleware:
    """
    WSGI wrapper for the mock store.

    Puts the caller's request ID (or a fresh one) in ``environ["REQUEST_ID"]``,
    binds it into the structlog context while the app runs, and returns it as
    a response header.
    """

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        request_id = environ.get(_REQUEST_ID_ENVIRON) or generate_request_id()
        environ["REQUEST_ID"] = request_id

        def with_header(status, headers, exc_info=None):
            headers.append((REQUEST_ID_HEADER, request_id))
            return start_response(status, headers, exc_info)

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            return self.app(environ, with_header)
