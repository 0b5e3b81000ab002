import logging
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from storefront_backend.exceptions import (
    CartNotActive,
    CheckoutValidationError,
    CouponRejected,
    OrderIntegrityError,
    PaymentGatewayError,
)
from products.services import decrement_stock
from payments.models import PaymentIntent
from payments.services import RazorpayService, create_remote_order
from .models import Cart, CartItem, Coupon, Order, OrderItem
from .numbering import generate_order_number, generate_payment_reference

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

REQUIRED_CUSTOMER_FIELDS = ('name', 'phone')
REQUIRED_ADDRESS_FIELDS = ('line1', 'city', 'state', 'pincode')
ADDRESS_FIELDS = ('line1', 'line2', 'city', 'state', 'pincode')


def to_money(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# --- Cart ---

def get_active_cart(tenant, cart_id):
    """Returns the tenant's active cart with this id, or None if it is unknown or already converted."""
    if not cart_id:
        return None
    try:
        return Cart.objects.filter(pk=cart_id, tenant=tenant, status=Cart.Status.ACTIVE).first()
    except (ValueError, ValidationError):
        # Malformed ids from the client are treated as "no cart yet".
        logger.info(f"Ignoring unusable cart id '{cart_id}' for tenant {tenant.id}")
        return None


def get_or_create_cart(tenant, cart_id=None):
    cart = get_active_cart(tenant, cart_id)
    if cart is None:
        cart = Cart.objects.create(tenant=tenant)
        logger.info(f"Created cart {cart.id} for tenant {tenant.id}")
    return cart


def _ensure_active(cart):
    if not cart.is_active:
        raise CartNotActive("This cart has already been checked out.")


def add_to_cart(cart, product, qty=1):
    """
    Adds ``qty`` units of a product. A product already in the cart keeps its
    line and the price captured when it was first added.
    """
    _ensure_active(cart)
    if qty <= 0:
        raise CheckoutValidationError("Quantity must be at least 1.")
    if product.tenant_id != cart.tenant_id or not product.is_active:
        raise CheckoutValidationError("This product is not available in this store.")

    with transaction.atomic():
        item, created = CartItem.objects.select_for_update().get_or_create(
            cart=cart,
            product=product,
            defaults={'qty': qty, 'unit_price': product.price},
        )
        if not created:
            CartItem.objects.filter(pk=item.pk).update(qty=F('qty') + qty)
            item.refresh_from_db()

    logger.info(f"Cart {cart.id}: product {product.id} qty now {item.qty}")
    return item


def update_cart_item(cart, item_id, qty):
    """Sets a line's quantity; zero or less removes the line."""
    _ensure_active(cart)
    if qty <= 0:
        remove_cart_item(cart, item_id)
        return None

    item = CartItem.objects.filter(pk=item_id, cart=cart).first()
    if item is None:
        return None
    item.qty = qty
    item.save(update_fields=['qty'])
    return item


def remove_cart_item(cart, item_id):
    _ensure_active(cart)
    CartItem.objects.filter(pk=item_id, cart=cart).delete()


def clear_cart(cart):
    _ensure_active(cart)
    deleted, _ = cart.items.all().delete()
    logger.info(f"Cleared cart {cart.id} ({deleted} lines)")


def cart_subtotal(cart):
    return to_money(sum((item.line_total for item in cart.items.all()), Decimal('0')))


def serialize_cart(cart):
    items = list(cart.items.select_related('product'))
    return {
        'id': str(cart.id),
        'status': cart.status,
        'items': [
            {
                'id': item.id,
                'product_id': str(item.product_id),
                'name': item.product.name,
                'qty': item.qty,
                'unit_price': str(item.unit_price),
                'line_total': str(to_money(item.line_total)),
            }
            for item in items
        ],
        'item_count': sum(item.qty for item in items),
        'subtotal': str(to_money(sum((item.line_total for item in items), Decimal('0')))),
    }


# --- Coupons ---

def validate_coupon(tenant, code, subtotal):
    """
    Checks a coupon code against a cart subtotal and returns ``(coupon, discount)``.
    Raises CouponRejected with the reason to show the shopper.
    """
    if not code:
        raise CouponRejected("Invalid coupon code")

    coupon = Coupon.objects.filter(tenant=tenant, code=code.upper().strip()).first()
    if coupon is None:
        logger.info(f"Coupon not found: {code}")
        raise CouponRejected("Invalid coupon code")
    if not coupon.is_active:
        raise CouponRejected("Coupon is inactive")

    now = timezone.now()
    if coupon.starts_at and coupon.starts_at > now:
        raise CouponRejected("Coupon is not yet active")
    if coupon.ends_at and coupon.ends_at < now:
        raise CouponRejected("Coupon has expired")
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponRejected("Coupon usage limit reached")
    if subtotal < coupon.min_cart_amount:
        raise CouponRejected(
            f"Minimum cart amount is ₹{coupon.min_cart_amount}",
            min_cart_amount=str(coupon.min_cart_amount),
        )

    if coupon.type == Coupon.Type.PERCENT:
        discount = subtotal * coupon.value / Decimal('100')
        if coupon.max_discount_amount is not None and discount > coupon.max_discount_amount:
            discount = coupon.max_discount_amount
    else:
        discount = coupon.value

    discount = to_money(min(discount, subtotal))
    logger.info(f"Coupon {coupon.code} validated for subtotal {subtotal}: discount {discount}")
    return coupon, discount


def _redeem_coupon(coupon):
    redeemed = Coupon.objects.filter(pk=coupon.pk).filter(
        Q(usage_limit__isnull=True) | Q(used_count__lt=F('usage_limit'))
    ).update(used_count=F('used_count') + 1)
    if not redeemed:
        raise CouponRejected("Coupon usage limit reached")


# --- Checkout ---

def _text(value):
    # JSON clients send pincodes and phones as numbers as often as strings.
    return str(value if value is not None else '').strip()


def _validate_checkout(cart, customer, shipping_address, payment_method):
    if cart is None or not cart.is_active:
        raise CheckoutValidationError("Your cart is empty or has already been checked out.")

    items = list(cart.items.select_related('product'))
    if not items:
        raise CheckoutValidationError("Cannot process an empty order.")

    malformed = [f for f, v in [*customer.items(), *shipping_address.items()] if isinstance(v, (dict, list, bool))]
    if malformed:
        raise CheckoutValidationError(f"Fields must be text: {malformed}", fields=malformed)

    missing = [f for f in REQUIRED_CUSTOMER_FIELDS if not _text(customer.get(f))]
    missing += [f for f in REQUIRED_ADDRESS_FIELDS if not _text(shipping_address.get(f))]
    if missing:
        raise CheckoutValidationError(f"Missing required fields: {missing}", fields=missing)

    if payment_method not in Order.PaymentMethod.values:
        raise CheckoutValidationError(f"Unsupported payment method. Choose one of: {Order.PaymentMethod.values}")

    return items


def _create_order_row(tenant, **fields):
    """Inserts the order, regenerating the order number if it collides."""
    prefix = settings.ORDER_NUMBER_PREFIX
    for attempt in range(1, settings.ORDER_NUMBER_MAX_ATTEMPTS + 1):
        order_number = generate_order_number(prefix)
        try:
            with transaction.atomic():
                return Order.objects.create(tenant=tenant, order_number=order_number, **fields)
        except IntegrityError:
            if not Order.objects.filter(tenant=tenant, order_number=order_number).exists():
                raise
            logger.warning(f"Order number {order_number} already taken (attempt {attempt}); regenerating")
    raise OrderIntegrityError("Could not allocate an order number. Please try again.")


def place_order(tenant, cart, customer, shipping_address, payment_method, coupon_code=None, cache=None):
    """
    Turns an active cart into an order.

    Order row, item snapshots, stock decrements, coupon redemption and cart
    conversion are written in one transaction: either all of them happen or
    the cart stays active. For online payments the remote gateway order is
    created afterwards; if that fails the order stays ``unpaid`` and payment
    can be retried against it.

    Returns ``(order, payment)`` where ``payment`` holds the client checkout
    credentials for online payments and is None otherwise.
    """
    items = _validate_checkout(cart, customer, shipping_address, payment_method)

    gateway = None
    if payment_method == Order.PaymentMethod.RAZORPAY:
        gateway = RazorpayService.for_tenant(tenant, cache)

    subtotal = to_money(sum((item.line_total for item in items), Decimal('0')))
    coupon, discount = None, Decimal('0.00')
    if coupon_code:
        coupon, discount = validate_coupon(tenant, coupon_code, subtotal)
    total = subtotal - discount

    logger.info(f"Placing {payment_method} order for cart {cart.id} with {len(items)} items. Total: {total}")

    try:
        with transaction.atomic():
            order = _create_order_row(
                tenant,
                cart=cart,
                coupon=coupon,
                customer_name=_text(customer['name']),
                customer_phone=_text(customer['phone']),
                customer_email=_text(customer.get('email')) or None,
                shipping_address={f: _text(shipping_address.get(f)) for f in ADDRESS_FIELDS},
                subtotal=subtotal,
                discount=discount,
                total=total,
                payment_method=payment_method,
                status=Order.Status.PENDING,
                payment_status=Order.PaymentStatus.UNPAID,
            )

            for item in items:
                OrderItem.objects.create(
                    order=order,
                    product=item.product,
                    name=item.product.name,
                    qty=item.qty,
                    unit_price=item.unit_price,
                    line_total=to_money(item.line_total),
                )
                decrement_stock(item.product_id, item.qty)

            if coupon is not None:
                _redeem_coupon(coupon)

            converted = Cart.objects.filter(pk=cart.pk, status=Cart.Status.ACTIVE).update(status=Cart.Status.CONVERTED)
            if not converted:
                raise CartNotActive("This cart has already been checked out.")

            if gateway is not None:
                PaymentIntent.objects.create(
                    tenant=tenant,
                    order=order,
                    reference=generate_payment_reference(),
                    amount=total,
                    currency=settings.DEFAULT_CURRENCY,
                )
    except DatabaseError as e:
        logger.error(f"Checkout failed for cart {cart.id}; nothing was written: {e}")
        raise OrderIntegrityError("Failed to place order. Please try again.")

    cart.status = Cart.Status.CONVERTED
    logger.info(f"Order {order.order_number} placed for tenant {tenant.id}")

    if gateway is None:
        return order, None

    try:
        payment = create_remote_order(order, gateway=gateway)
    except PaymentGatewayError as e:
        logger.error(f"Order {order.order_number} created but payment initiation failed: {e}")
        return order, None
    return order, payment


def serialize_order(order):
    return {
        'id': str(order.id),
        'order_number': order.order_number,
        'status': order.status,
        'payment_status': order.payment_status,
        'payment_method': order.payment_method,
        'customer_name': order.customer_name,
        'customer_phone': order.customer_phone,
        'customer_email': order.customer_email,
        'shipping_address': order.shipping_address,
        'subtotal': str(order.subtotal),
        'discount': str(order.discount),
        'total': str(order.total),
        'total_refunded': str(order.total_refunded),
        'items': [
            {
                'product_id': str(item.product_id) if item.product_id else None,
                'name': item.name,
                'qty': item.qty,
                'unit_price': str(item.unit_price),
                'line_total': str(item.line_total),
            }
            for item in order.items.all()
        ],
    }
