from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
import logging

from storefront_backend.exceptions import StorefrontError
from .services import WebhookReconciler

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def razorpay_webhook(request):
    """
    Listener for Razorpay webhooks.

    The signature covers the raw body, so the body is handed to the
    reconciler untouched. Deliveries that fail while being applied are
    acknowledged and queued for retry rather than bounced back to Razorpay.
    """
    signature = request.headers.get('X-Razorpay-Signature', '')
    event_id = request.headers.get('X-Razorpay-Event-Id') or None

    try:
        result = WebhookReconciler().handle(request.body, signature, event_id=event_id)
    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)
    except ValueError:
        logger.error("Razorpay webhook body is not a valid JSON object")
        return HttpResponseBadRequest("Invalid JSON")

    return JsonResponse(result)
