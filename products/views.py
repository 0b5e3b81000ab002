from django.http import JsonResponse
from django.views.decorators.http import require_GET
import logging

from storefront_backend.exceptions import StorefrontError
from tenants.services import resolve_tenant, tenant_cache
from .models import Product
from .services import PRODUCT_COLLECTIONS, products_for_collection, serialize_product

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@require_GET
def list_products(request, slug):
    """
    Public product listing for a storefront.

    Optional query parameters: ``collection`` (featured, recent, best_sellers,
    trending), ``category`` and ``brand`` slugs, ``q`` name search and ``limit``.
    """
    try:
        tenant = resolve_tenant(slug, tenant_cache())
    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)

    try:
        limit = min(int(request.GET.get('limit', 24)), MAX_PAGE_SIZE)
    except ValueError:
        return JsonResponse({'error': 'limit must be an integer'}, status=400)

    collection = request.GET.get('collection')
    if collection:
        if collection not in PRODUCT_COLLECTIONS:
            return JsonResponse({'error': f"Unknown collection. Choose one of: {list(PRODUCT_COLLECTIONS)}"}, status=400)
        products = products_for_collection(tenant, collection, limit)
    else:
        products = Product.objects.filter(tenant=tenant, is_active=True).select_related('category', 'brand')
        if request.GET.get('category'):
            products = products.filter(category__slug=request.GET['category'])
        if request.GET.get('brand'):
            products = products.filter(brand__slug=request.GET['brand'])
        if request.GET.get('q'):
            products = products.filter(name__icontains=request.GET['q'])
        products = list(products[:limit])

    return JsonResponse({'products': [serialize_product(p) for p in products]})
