"""Middleware that assigns a request identifier and guards the API surface.

``RequestIdMiddleware`` gives every incoming HTTP request an identifier
(UUID). The identifier is read from the incoming ``X-Request-Id`` header
when the client or an upstream proxy provides one, or generated
server-side otherwise. It is stored on the ``request`` object and in a
context variable so log records emitted anywhere downstream can be
correlated. Payment callbacks store it on their row, so reconciliation
logs carry it even when they run later on a worker thread. One structured
"request handled" line is logged per request.

``ApiSizeLimitMiddleware`` rejects oversized bodies on ``/api/`` before
any view parses them. Paths in ``API_SIZE_LIMIT_EXEMPT_PATHS`` are let
through; the payment callback is one, since the provider must always get
its acknowledgement.
"""

import contextvars
import logging
import time
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

logger = logging.getLogger("store.gateway")


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The incoming header in ``request.META`` casing.
        RESPONSE_HEADER (str): The header added to outgoing responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._started_at = time.monotonic()
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Attach the request id header and log the request outcome."""
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        started = getattr(request, "_started_at", None)
        duration_ms = round((time.monotonic() - started) * 1000, 2) if started else None
        logger.info(
            "request handled",
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Reject API requests whose declared body exceeds ``API_MAX_BYTES``."""

    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        if request.path.rstrip("/") in getattr(settings, "API_SIZE_LIMIT_EXEMPT_PATHS", ()):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > settings.API_MAX_BYTES:
            return JsonResponse(
                {"message": "Request body too large", "code": "PAYLOAD_TOO_LARGE"},
                status=413,
            )
        return None
