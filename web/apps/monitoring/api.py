from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.payments.providers import get_mpesa_config


def health_view(_request):
    """Liveness plus component checks. Only the database decides the status code."""
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    missing = get_mpesa_config().missing()
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "mpesa": {"configured": not missing, "missing": missing},
            },
        },
        status=code,
    )
