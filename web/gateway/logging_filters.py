"""Logging filters for the web project.

``RequestContextFilter`` stamps every record with the current request id and
gives the order-context fields used by the lifecycle logger a default, so a
single JSON format string works for every logger.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX

ORDER_FIELDS = ("order_id", "event")


class RequestContextFilter(Filter):
    def filter(self, record: LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get()
        for name in ORDER_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True
