"""JSON logs on stdout, tagged with the request's correlation identifiers.

`trace_id` comes from the `x-correlation-id` header (or a fresh uuid),
`resource_id` and `account_id` are set by services once they know which row a
request or webhook is about.
"""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from paysub.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
resource_id_ctx: ContextVar[str] = ContextVar("resource_id", default="")
account_id_ctx: ContextVar[str] = ContextVar("account_id", default="")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(resource_id)s %(account_id)s %(message)s"

# Third-party loggers that log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.resource_id = resource_id_ctx.get()
        record.account_id = account_id_ctx.get()
        return True


def configure_logging(level: str | None = None) -> None:
    """Replace root handlers with a single JSON stdout handler."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter(LOG_FORMAT, rename_fields={"asctime": "timestamp", "levelname": "level"}))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel((level or settings.log_level).upper())
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("paysub")
