import logging
import contextvars
from typing import Optional

# Context variable to store request ID across async operations
request_id_context = contextvars.ContextVar('request_id', default=None)


class RequestAwareFormatter(logging.Formatter):
    """
    Formatter that fills in ``request_id`` on every record.

    Uses the id passed explicitly through ``extra`` when present, then the id of
    the request currently being served, then a placeholder.
    """

    def format(self, record: logging.LogRecord) -> str:
        request_id = getattr(record, 'request_id', None) or request_id_context.get()
        record.request_id = request_id or "no-request-id"
        return super().format(record)


class RequestAwareLogger:
    """
    A logger wrapper that automatically includes request context.

    Call sites log with ``logger.info(...)`` as usual and may pass
    ``request_id=...`` to override the id taken from the context.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    def _log_with_context(self, level: int, msg: str, *args, **kwargs):
        request_id = kwargs.pop('request_id', None) or request_id_context.get()
        if request_id:
            extra = kwargs.get('extra', {})
            extra['request_id'] = request_id
            kwargs['extra'] = extra
        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._log_with_context(logging.ERROR, msg, *args, exc_info=True, **kwargs)


def get_logger(name: str) -> RequestAwareLogger:
    """Get a request-aware logger for the specified name (usually __name__)."""
    return RequestAwareLogger(name)


def set_request_context(request_id: str):
    """Set the request ID for the request being served."""
    request_id_context.set(request_id)


def get_request_context() -> Optional[str]:
    return request_id_context.get()


def clear_request_context():
    request_id_context.set(None)
