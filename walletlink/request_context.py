from __future__ import annotations

import logging
from contextvars import ContextVar


current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')
current_request_id: ContextVar[str] = ContextVar('current_request_id', default='')


class RequestContextFilter(logging.Filter):
    """Stamps each record with the endpoint and request id of the request that logged it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.endpoint = current_endpoint.get()
        record.request_id = current_request_id.get() or '-'
        return True
