"""
Logging setup

Modules log through logging.getLogger(__name__). Code that serves a
request receives its request_id explicitly and wraps the module logger
with get_request_logger so every line carries the id.
"""
import logging
import uuid
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with the request id"""

    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']}] {msg}", kwargs


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def get_request_logger(name: str, request_id: Optional[str] = None) -> logging.LoggerAdapter:
    """
    Logger bound to a request id

    Args:
        name: Logger name, usually __name__ of the calling module
        request_id: Id of the request being served; "-" when running outside one

    Returns:
        LoggerAdapter that prepends "[request_id]" to every message
    """
    return RequestLoggerAdapter(logging.getLogger(name), {"request_id": request_id or "-"})
