import logging
import time

logger = logging.getLogger(__name__)


class RequestTimingMiddleware:
    """
    Logs method, path, status and duration for every request.
    Requests slower than ``SLOW_REQUEST_MS`` are logged as warnings.
    """
    SLOW_REQUEST_MS = 1000

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        started = time.perf_counter()
        response = self.get_response(request)
        duration_ms = (time.perf_counter() - started) * 1000

        message = f"{request.method} {request.path} -> {response.status_code} in {duration_ms:.1f}ms"
        if duration_ms >= self.SLOW_REQUEST_MS:
            logger.warning(f"Slow request: {message}")
        else:
            logger.info(message)
        return response
