"""Logging filters for enriching log records with request context.

Adding ``RequestIdFilter`` to a handler makes ``%(request_id)s`` usable in
every formatter without touching individual log statements.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    A value passed explicitly through ``extra={"request_id": ...}`` wins
    over the context variable; this is how the callback worker threads tag
    their records with the id of the delivery that queued them. When neither
    is set a hyphen is used so formatters never fail.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
