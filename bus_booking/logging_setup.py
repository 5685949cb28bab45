import logging
import sys
from pythonjsonlogger.json import JsonFormatter
from contextvars import ContextVar

from bus_booking.config import settings

# request trace id, set by the http middleware
TRACE_ID_CTX: ContextVar[str] = ContextVar("trace_id", default=None)

# chatty at INFO, one line per statement / request
QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access")


class TraceIdFilter(logging.Filter):
    def filter(self, record):
        record.trace_id = TRACE_ID_CTX.get(None)
        record.service = settings.APP_NAME
        return True


def setup_logging(level=None):
    level = level or settings.LOG_LEVEL
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s %(trace_id)s %(service)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
    )
    handler.addFilter(TraceIdFilter())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
