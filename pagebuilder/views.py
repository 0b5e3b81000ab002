from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST
import json
import logging

from storefront_backend.exceptions import StorefrontError
from tenants.services import resolve_tenant, tenant_cache
from .editor import LayoutEditor
from .renderer import render_layout
from .services import load_layout, save_layout

logger = logging.getLogger(__name__)


@csrf_exempt
@require_http_methods(["GET", "PUT"])
def homepage_layout(request, slug):
    """
    GET returns the saved layout document; PUT replaces it wholesale.
    Owner authentication is enforced upstream of this service.
    """
    try:
        tenant = resolve_tenant(slug, tenant_cache(), require_subscription=False)

        if request.method == 'GET':
            return JsonResponse(load_layout(tenant))

        try:
            layout = json.loads(request.body)
        except json.JSONDecodeError:
            return HttpResponseBadRequest("Invalid JSON")

        saved = save_layout(tenant, layout)
        return JsonResponse(saved)

    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)


@csrf_exempt
@require_POST
def apply_layout_operations(request, slug):
    """
    Loads the layout, applies a batch of editor operations in order and saves
    the result. Nothing is written if any operation is invalid.

    Body: ``{"operations": [{"op": "add", "type": "hero"}, ...]}``
    """
    try:
        data = json.loads(request.body)
    except json.JSONDecodeError:
        return HttpResponseBadRequest("Invalid JSON")

    if not isinstance(data, dict):
        return HttpResponseBadRequest("Request body must be a JSON object")
    operations = data.get('operations')
    if not isinstance(operations, list) or not operations:
        return HttpResponseBadRequest("'operations' must be a non-empty list")

    try:
        tenant = resolve_tenant(slug, tenant_cache(), require_subscription=False)
        editor = LayoutEditor(load_layout(tenant))
        for operation in operations:
            if not isinstance(operation, dict):
                return HttpResponseBadRequest("Each operation must be an object")
            editor.apply(operation)

        saved = save_layout(tenant, editor.to_layout())
        logger.info(f"Applied {len(operations)} layout operations for tenant {tenant.id}")
        return JsonResponse(saved)

    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)


@require_GET
def storefront_home(request, slug):
    try:
        tenant = resolve_tenant(slug, tenant_cache())
    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)

    sections = render_layout(tenant, load_layout(tenant))
    return JsonResponse({
        'store': {'name': tenant.store_name, 'slug': tenant.store_slug, 'business_type': tenant.business_type},
        'sections': sections,
    })
