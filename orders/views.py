from django.core.exceptions import ValidationError
from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST
from decimal import Decimal, InvalidOperation
import json
import logging

from storefront_backend.exceptions import StorefrontError
from tenants.services import resolve_tenant, tenant_cache
from products.models import Product
from payments.services import create_remote_order, mark_payment_failed, verify_payment
from .models import Order
from .services import (
    add_to_cart,
    cart_subtotal,
    clear_cart,
    get_active_cart,
    get_or_create_cart,
    place_order,
    remove_cart_item,
    serialize_cart,
    serialize_order,
    update_cart_item,
    validate_coupon,
)

logger = logging.getLogger(__name__)


def _json_body(request):
    if not request.body:
        return {}
    data = json.loads(request.body)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _cart_not_found():
    return JsonResponse({'error': 'Cart not found'}, status=404)


def _order_not_found():
    return JsonResponse({'error': 'Order not found'}, status=404)


def _parse_qty(value, default=None):
    if value is None:
        return default
    # Whole numbers only; bools and 1.5 are rejected rather than truncated.
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"Invalid quantity: {value!r}")
    return int(value)


# --- Cart ---

@csrf_exempt
@require_POST
def create_cart(request, slug):
    """
    Returns the active cart named by ``cart_id`` in the body, or a new one.
    The returned id is held by the client and sent back on every cart call.
    """
    try:
        data = _json_body(request)
    except ValueError:
        return HttpResponseBadRequest("Invalid JSON")

    try:
        tenant = resolve_tenant(slug, tenant_cache())
        cart = get_or_create_cart(tenant, data.get('cart_id'))
    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)

    return JsonResponse(serialize_cart(cart), status=201)


@csrf_exempt
@require_http_methods(["GET", "DELETE"])
def cart_detail(request, slug, cart_id):
    try:
        tenant = resolve_tenant(slug, tenant_cache())
        cart = get_active_cart(tenant, cart_id)
        if cart is None:
            return _cart_not_found()

        if request.method == 'DELETE':
            clear_cart(cart)
        return JsonResponse(serialize_cart(cart))

    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)


@csrf_exempt
@require_POST
def add_cart_item(request, slug, cart_id):
    """Body: ``{"product_id": "...", "qty": 1}``."""
    try:
        data = _json_body(request)
        qty = _parse_qty(data.get('qty'), default=1)
    except ValueError:
        return HttpResponseBadRequest("Invalid JSON or quantity")

    if not data.get('product_id'):
        return HttpResponseBadRequest("Missing required field: product_id")

    try:
        tenant = resolve_tenant(slug, tenant_cache())
        cart = get_active_cart(tenant, cart_id)
        if cart is None:
            return _cart_not_found()

        try:
            product = Product.objects.filter(pk=data['product_id'], tenant=tenant, is_active=True).first()
        except (ValueError, ValidationError):
            product = None
        if product is None:
            return JsonResponse({'error': 'Product not found'}, status=404)

        add_to_cart(cart, product, qty)
        return JsonResponse(serialize_cart(cart))

    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)


@csrf_exempt
@require_http_methods(["PATCH", "DELETE"])
def cart_item_detail(request, slug, cart_id, item_id):
    """PATCH ``{"qty": n}`` sets a line's quantity (0 removes it); DELETE removes the line."""
    qty = None
    if request.method == 'PATCH':
        try:
            qty = _parse_qty(_json_body(request).get('qty'))
        except ValueError:
            return HttpResponseBadRequest("Invalid JSON or quantity")
        if qty is None:
            return HttpResponseBadRequest("Missing required field: qty")

    try:
        tenant = resolve_tenant(slug, tenant_cache())
        cart = get_active_cart(tenant, cart_id)
        if cart is None:
            return _cart_not_found()

        if request.method == 'DELETE':
            remove_cart_item(cart, item_id)
        else:
            update_cart_item(cart, item_id, qty)
        return JsonResponse(serialize_cart(cart))

    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)


# --- Checkout ---

@csrf_exempt
@require_POST
def checkout(request, slug):
    """
    Places an order from the client's cart.

    Body::

        {
            "cart_id": "...",
            "customer": {"name": "...", "phone": "...", "email": "..."},
            "shipping_address": {"line1": "...", "line2": "...", "city": "...", "state": "...", "pincode": "..."},
            "payment_method": "cod" | "razorpay",
            "coupon_code": "OPTIONAL"
        }

    For ``razorpay`` the response carries the checkout widget credentials
    under ``payment``. If the gateway could not be reached the order is still
    created and ``payment`` is null; the client retries through the pay endpoint.
    """
    try:
        data = _json_body(request)
    except ValueError:
        return HttpResponseBadRequest("Invalid JSON")

    required_fields = ['cart_id', 'customer', 'shipping_address', 'payment_method']
    if not all(field in data for field in required_fields):
        return HttpResponseBadRequest(f"Missing required fields. Required: {required_fields}")
    if not isinstance(data['customer'], dict) or not isinstance(data['shipping_address'], dict):
        return HttpResponseBadRequest("customer and shipping_address must be objects")

    try:
        cache = tenant_cache()
        tenant = resolve_tenant(slug, cache)
        cart = get_active_cart(tenant, data['cart_id'])
        order, payment = place_order(
            tenant,
            cart,
            data['customer'],
            data['shipping_address'],
            data['payment_method'],
            coupon_code=data.get('coupon_code'),
            cache=cache,
        )
    except StorefrontError as e:
        logger.warning(f"Checkout rejected for store '{slug}': {e.message}")
        return JsonResponse(e.as_dict(), status=e.status_code)

    response = {'order': serialize_order(order), 'payment': payment}
    if order.payment_method == Order.PaymentMethod.RAZORPAY and payment is None:
        response['message'] = "Order placed but payment could not be started. Please retry payment."
    return JsonResponse(response, status=201)


# --- Online payment ---

def _get_order(tenant, order_number):
    return Order.objects.filter(tenant=tenant, order_number=order_number).select_related('tenant').first()


@csrf_exempt
@require_POST
def pay_order(request, slug, order_number):
    """Creates (or re-creates) the Razorpay order for an unpaid order."""
    try:
        cache = tenant_cache()
        tenant = resolve_tenant(slug, cache)
        order = _get_order(tenant, order_number)
        if order is None:
            return _order_not_found()

        payment = create_remote_order(order, cache=cache)
        return JsonResponse({'payment': payment})

    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)


@csrf_exempt
@require_POST
def verify_order_payment(request, slug, order_number):
    """
    Success callback from the checkout widget.

    Body: ``razorpay_order_id``, ``razorpay_payment_id``, ``razorpay_signature``.
    """
    try:
        data = _json_body(request)
    except ValueError:
        return HttpResponseBadRequest("Invalid JSON")

    required_fields = ['razorpay_order_id', 'razorpay_payment_id', 'razorpay_signature']
    if not all(data.get(field) for field in required_fields):
        return HttpResponseBadRequest(f"Missing required fields. Required: {required_fields}")

    try:
        cache = tenant_cache()
        tenant = resolve_tenant(slug, cache)
        order = _get_order(tenant, order_number)
        if order is None:
            return _order_not_found()

        verify_payment(order, data['razorpay_order_id'], data['razorpay_payment_id'], data['razorpay_signature'],
                       cache=cache)
        order.refresh_from_db()
        return JsonResponse({'status': 'success', 'order': serialize_order(order)})

    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)


@csrf_exempt
@require_POST
def cancel_order_payment(request, slug, order_number):
    """The shopper closed the payment widget. Body: optional ``reason``."""
    try:
        data = _json_body(request)
    except ValueError:
        return HttpResponseBadRequest("Invalid JSON")

    try:
        tenant = resolve_tenant(slug, tenant_cache())
        order = _get_order(tenant, order_number)
        if order is None:
            return _order_not_found()

        mark_payment_failed(order, data.get('reason'))
        return JsonResponse({'order': serialize_order(order)})

    except StorefrontError as e:
        return JsonResponse(e.as_dict(), status=e.status_code)


# --- Coupons ---

@csrf_exempt
@require_POST
def validate_coupon_code(request, slug):
    """
    Body: ``code`` plus either ``cart_id`` or an explicit ``subtotal``.
    Returns the discount the coupon would give; nothing is redeemed.
    """
    try:
        data = _json_body(request)
    except ValueError:
        return HttpResponseBadRequest("Invalid JSON")

    code = (data.get('code') or '').strip()
    if not code:
        return HttpResponseBadRequest("Missing required field: code")

    try:
        tenant = resolve_tenant(slug, tenant_cache())

        if data.get('cart_id'):
            cart = get_active_cart(tenant, data['cart_id'])
            if cart is None:
                return _cart_not_found()
            subtotal = cart_subtotal(cart)
        else:
            try:
                subtotal = Decimal(str(data.get('subtotal')))
            except InvalidOperation:
                return HttpResponseBadRequest("Provide a cart_id or a numeric subtotal")
            if not subtotal.is_finite() or subtotal < 0:
                return HttpResponseBadRequest("Provide a cart_id or a numeric subtotal")

        coupon, discount = validate_coupon(tenant, code, subtotal)
        return JsonResponse({
            'valid': True,
            'code': coupon.code,
            'type': coupon.type,
            'discount': str(discount),
            'total': str(subtotal - discount),
        })

    except StorefrontError as e:
        return JsonResponse({'valid': False, **e.as_dict()}, status=e.status_code)
