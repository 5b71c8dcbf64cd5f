import logging
import time
from django.utils.deprecation import MiddlewareMixin
from django.http import JsonResponse

logger = logging.getLogger("apps.requests")


class RequestLogMiddleware(MiddlewareMixin):
    """
    One log line per API request: method, path, status, duration.
    """
    def process_request(self, request):
        request._started_at = time.monotonic()

    def process_response(self, request, response):
        started = getattr(request, "_started_at", None)
        if started is not None and request.path.startswith('/api/'):
            duration_ms = (time.monotonic() - started) * 1000
            user = getattr(request, "user", None)
            logger.info(
                f"{request.method} {request.path} -> {response.status_code} ({duration_ms:.1f}ms)",
                extra={"user_id": getattr(user, "pk", None)},
            )
        return response


class GlobalExceptionMiddleware(MiddlewareMixin):
    """
    Last line of defense for non-DRF views.
    """
    def process_exception(self, request, exception):
        logger.exception(f"Unhandled Middleware Exception: {str(exception)}")
        if request.path.startswith('/api/'):
            return JsonResponse(
                {"success": False, "message": "Internal System Error"},
                status=500
            )
        return None # Let Django's default 500 handler work for HTML
