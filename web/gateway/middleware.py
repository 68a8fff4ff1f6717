"""Gateway middleware: request correlation and API body size limits.

``RequestIdMiddleware`` gives every request an id, reusing the caller's
``X-Request-ID`` header when present, and publishes it through
``REQUEST_ID_CTX`` so logging filters and outgoing ledger calls can read it
without the request object. The id is echoed on the response.

``ApiSizeLimitMiddleware`` rejects oversized ``/api/`` bodies with 413 before
they reach a view.
"""

import contextvars
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Reject ``/api/`` requests whose declared body exceeds ``API_MAX_BYTES``."""

    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > limit:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None
