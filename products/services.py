import logging

from django.conf import settings
from django.db.models import F, Value
from django.db.models.functions import Greatest

from storefront_backend.exceptions import InsufficientStockError
from .models import Product

logger = logging.getLogger(__name__)

STOCK_POLICY_CLAMP = 'clamp'
STOCK_POLICY_STRICT = 'strict'

PRODUCT_COLLECTIONS = ('featured', 'recent', 'best_sellers', 'trending')


def decrement_stock(product_id, quantity, policy=None):
    """
    Takes ``quantity`` units out of a product's stock with a single UPDATE.

    With the "clamp" policy stock is floored at zero; with "strict" the
    UPDATE only matches rows holding enough stock and InsufficientStockError
    is raised otherwise. Either way concurrent checkouts never interleave a
    read and a write on the same row.
    """
    policy = policy or settings.STOCK_DECREMENT_POLICY
    products = Product.objects.filter(pk=product_id)

    if policy == STOCK_POLICY_STRICT:
        updated = products.filter(stock_qty__gte=quantity).update(
            stock_qty=F('stock_qty') - quantity,
            sales_count=F('sales_count') + quantity,
        )
        if not updated:
            logger.warning(f"Insufficient stock for product {product_id}. Requested: {quantity}")
            raise InsufficientStockError(
                "An item in your order is out of stock.",
                product_id=str(product_id),
            )
        return

    updated = products.update(
        stock_qty=Greatest(F('stock_qty') - quantity, Value(0)),
        sales_count=F('sales_count') + quantity,
    )
    if not updated:
        logger.warning(f"Stock decrement skipped: product {product_id} no longer exists")


def products_for_collection(tenant, collection, limit):
    products = Product.objects.filter(tenant=tenant, is_active=True)

    if collection == 'featured':
        products = products.filter(is_featured=True).order_by('-created_at')
    elif collection == 'best_sellers':
        products = products.filter(sales_count__gt=0).order_by('-sales_count')
    elif collection == 'trending':
        products = products.order_by('-view_count', '-sales_count')
    else:
        products = products.order_by('-created_at')

    return list(products.select_related('category', 'brand')[:limit])


def serialize_product(product):
    return {
        "id": str(product.id),
        "name": product.name,
        "slug": product.slug,
        "price": str(product.price),
        "images": product.images,
        "in_stock": product.stock_qty > 0,
        "stock_qty": product.stock_qty,
        "category": product.category.name if product.category_id else None,
        "brand": product.brand.name if product.brand_id else None,
    }
