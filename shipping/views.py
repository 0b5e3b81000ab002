from django.conf import settings
from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
import hmac
import json
import logging

from storefront_backend.exceptions import StorefrontError
from .services import ShiprocketReconciler

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def shiprocket_webhook(request):
    """
    Listener for Shiprocket tracking webhooks. When SHIPROCKET_WEBHOOK_TOKEN
    is set the request must carry the same value in ``X-Api-Key``.
    """
    token = settings.SHIPROCKET_WEBHOOK_TOKEN
    if token and not hmac.compare_digest(request.headers.get('X-Api-Key', '').encode(), token.encode()):
        logger.error("Shiprocket webhook rejected: bad or missing API key")
        return JsonResponse({'error': 'Invalid token'}, status=401)

    try:
        payload = json.loads(request.body)
    except json.JSONDecodeError:
        return HttpResponseBadRequest("Invalid JSON")
    if not isinstance(payload, dict):
        return HttpResponseBadRequest("Webhook body must be a JSON object")

    logger.info(f"Received Shiprocket webhook: status={payload.get('current_status') or payload.get('status')}")

    try:
        result = ShiprocketReconciler().handle(payload)
    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)

    return JsonResponse(result)
