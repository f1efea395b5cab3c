"""DRF exception handler rendering every error as ``{message, code}``.

Views catch ``StoreError`` themselves at the operation boundary; this
handler covers what the framework raises before a view runs (auth,
permissions, throttling, unparsable JSON) and anything that escapes.
"""

import logging

from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.orders.errors import InternalError, StoreError

logger = logging.getLogger("store.gateway")


def render_error(exc: StoreError) -> Response:
    return Response(exc.to_body(), status=exc.status_code)


def api_exception_handler(exc, context):
    if isinstance(exc, StoreError):
        return render_error(exc)

    response = exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("unhandled error", extra={"view": type(view).__name__ if view else None})
        return render_error(InternalError("Internal server error"))

    if isinstance(exc, exceptions.APIException):
        detail = exc.detail
        message = detail if isinstance(detail, str) else str(getattr(exc, "default_detail", detail))
        code = exc.get_codes() if isinstance(exc.get_codes(), str) else "ERROR"
        body = {"message": str(message), "code": str(code).upper()}
        if response.status_code == status.HTTP_400_BAD_REQUEST and not isinstance(detail, str):
            body["errors"] = detail
        response.data = body
    return response
