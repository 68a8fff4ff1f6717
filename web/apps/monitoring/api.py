"""Health endpoint covering the orders database and, when the HTTP adapters
are enabled, the inventory and rewards services."""

import httpx
from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse


def _db_ok() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
    except DatabaseError:
        return False
    return True


def _service_ok(base_url: str) -> bool:
    try:
        resp = httpx.get(f"{base_url.rstrip('/')}/health", timeout=getattr(settings, "HEALTH_TIMEOUT_SECS", 1.0))
    except httpx.HTTPError:
        return False
    return resp.status_code == 200


def health_view(_request):
    components = {"db": {"ok": _db_ok()}}
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        components["inventory"] = {"ok": _service_ok(settings.INVENTORY_BASE_URL)}
        components["rewards"] = {"ok": _service_ok(settings.REWARDS_BASE_URL)}

    ok = all(c["ok"] for c in components.values())
    return JsonResponse({"ok": ok, "components": components}, status=200 if ok else 503)
