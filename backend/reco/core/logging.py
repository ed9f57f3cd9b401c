import logging
import sys
from typing import Optional

from reco.core.config import settings

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_configured = False


class _EventFormatter(logging.Formatter):
    """Appends the structured ``event`` field (passed via ``extra``) to the line."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        event = getattr(record, "event", None)
        if event:
            line = f"{line} [event={event}]"
        return line


def configure_logging(level: Optional[str] = None) -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_EventFormatter(_FORMAT))
    root = logging.getLogger("reco")
    root.setLevel((level or settings.LOG_LEVEL or "INFO").upper())
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
