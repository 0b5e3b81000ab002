import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal, ROUND_HALF_UP

import requests
from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from storefront_backend.exceptions import (
    PaymentGatewayError,
    PaymentGatewayNotConfigured,
    PaymentStateConflict,
    SignatureVerificationError,
    WebhookAuthenticationError,
    WebhookTargetNotFound,
)
from orders.models import Order
from tenants.services import get_tenant_integration, tenant_cache
from .models import OperationRetry, PaymentIntent, PaymentReconciliation, PaymentWebhook, Refund

logger = logging.getLogger(__name__)


def to_minor_units(amount):
    """Rupees to paise."""
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(amount):
    return (Decimal(amount) / 100).quantize(Decimal('0.01'))


def compute_signature(message, secret):
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(razorpay_order_id, razorpay_payment_id, signature, secret):
    """
    Checks the checkout callback signature: HMAC-SHA256 of
    ``"<order_id>|<payment_id>"`` keyed with the tenant's key secret.
    """
    if not signature or not secret:
        return False
    expected = compute_signature(f"{razorpay_order_id}|{razorpay_payment_id}", secret)
    return hmac.compare_digest(expected.encode(), str(signature).encode())


def verify_webhook_signature(raw_body, signature, secret):
    if not signature or not secret:
        return False
    return hmac.compare_digest(compute_signature(raw_body, secret).encode(), str(signature).encode())


# --- Razorpay Service ---

class RazorpayService:
    """
    A service class for interacting with the Razorpay Orders API on behalf of one store.
    """
    def __init__(self, key_id, key_secret, base_url=None, timeout=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = (base_url or settings.RAZORPAY_API_BASE).rstrip('/')
        self.timeout = timeout or settings.RAZORPAY_TIMEOUT

        if not all([self.key_id, self.key_secret, self.base_url]):
            raise PaymentGatewayNotConfigured("Razorpay not configured for this store")

    @classmethod
    def for_tenant(cls, tenant, cache=None):
        """Builds a client from the store's cached integration; ``cache`` defaults to the tenants cache."""
        integration = get_tenant_integration(tenant, tenant_cache() if cache is None else cache)
        # Log presence only, never the secret itself.
        logger.info(f"Loading Razorpay credentials for tenant {tenant.id}: "
                    f"{'configured' if integration and integration.razorpay_configured else 'NOT configured'}")
        if integration is None or not integration.razorpay_configured:
            raise PaymentGatewayNotConfigured("Razorpay not configured for this store")
        return cls(integration.razorpay_key_id, integration.razorpay_key_secret)

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method, url, auth=(self.key_id, self.key_secret), timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            logger.error(f"Razorpay API Error: {e.response.status_code} - {e.response.text}")
            raise PaymentGatewayError("Payment gateway rejected the request", gateway_status=e.response.status_code)
        except requests.exceptions.RequestException as e:
            logger.error(f"Razorpay API unreachable ({method} {path}): {e}")
            raise PaymentGatewayError("Payment gateway is unavailable. Please try again.")

    def create_order(self, amount, currency, receipt, notes=None):
        """
        Creates a remote order. ``amount`` is in the smallest currency unit.
        """
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        logger.info(f"Creating Razorpay order: {payload}")
        return self._request("POST", "/orders", json=payload)


# --- Payment state transitions ---

def _apply_payment_captured(order, razorpay_payment_id, razorpay_order_id=None, received_minor=None):
    """
    Moves an order to (confirmed, paid). Returns False when the order was
    already paid; monetary side effects are then skipped.
    """
    updated = Order.objects.filter(pk=order.pk).exclude(payment_status=Order.PaymentStatus.PAID).update(
        payment_status=Order.PaymentStatus.PAID,
        status=Order.Status.CONFIRMED,
        razorpay_payment_id=razorpay_payment_id,
        updated_at=timezone.now(),
    )
    PaymentIntent.objects.filter(order=order).exclude(status=PaymentIntent.Status.PAID).update(
        status=PaymentIntent.Status.PAID,
        razorpay_payment_id=razorpay_payment_id,
        updated_at=timezone.now(),
    )
    order.refresh_from_db()

    if not updated:
        logger.info(f"Order {order.order_number} already paid; capture of {razorpay_payment_id} recorded only")
        return False

    received = from_minor_units(received_minor) if received_minor is not None else order.total
    _, created = PaymentReconciliation.objects.get_or_create(
        razorpay_payment_id=razorpay_payment_id,
        defaults={
            'tenant_id': order.tenant_id,
            'order': order,
            'payment_intent': PaymentIntent.objects.filter(order=order).first(),
            'razorpay_order_id': razorpay_order_id or order.razorpay_order_id,
            'expected_amount': order.total,
            'received_amount': received,
            'status': (PaymentReconciliation.Status.MATCHED if received == order.total
                       else PaymentReconciliation.Status.MISMATCH),
        },
    )
    if created and received != order.total:
        logger.warning(f"Payment amount mismatch for order {order.order_number}: expected {order.total}, received {received}")
    logger.info(f"Order {order.order_number} marked paid with payment {razorpay_payment_id}")
    return True


def _apply_payment_failed(order):
    """Only an unpaid order can fail; ``status`` is left as it is."""
    updated = Order.objects.filter(pk=order.pk, payment_status=Order.PaymentStatus.UNPAID).update(
        payment_status=Order.PaymentStatus.FAILED,
        updated_at=timezone.now(),
    )
    PaymentIntent.objects.filter(order=order).filter(
        Q(status=PaymentIntent.Status.INITIATED) | Q(status=PaymentIntent.Status.RAZORPAY_ORDER_CREATED)
    ).update(status=PaymentIntent.Status.FAILED, updated_at=timezone.now())
    order.refresh_from_db()
    return bool(updated)


def _ensure_online_payment(order):
    # COD orders stay unpaid until collected at delivery; no payment callback applies to them.
    if order.payment_method != Order.PaymentMethod.RAZORPAY:
        raise PaymentStateConflict("This order is not payable online")


def create_remote_order(order, gateway=None, cache=None):
    """
    Opens (or re-opens) online payment for an order and returns what the
    client-side checkout widget needs.

    Safe to call again after a failed or abandoned attempt; a paid order is
    refused. The order is never duplicated.
    """
    _ensure_online_payment(order)
    if order.is_paid:
        raise PaymentStateConflict("This order has already been paid")

    gateway = gateway or RazorpayService.for_tenant(order.tenant, cache)

    with transaction.atomic():
        intent, _ = PaymentIntent.objects.get_or_create(
            order=order,
            defaults={
                'tenant_id': order.tenant_id,
                'reference': f"PI-{str(order.id)[:8]}",
                'amount': order.total,
                'currency': settings.DEFAULT_CURRENCY,
            },
        )
        if order.payment_status == Order.PaymentStatus.FAILED:
            # A new attempt against the same order.
            Order.objects.filter(pk=order.pk, payment_status=Order.PaymentStatus.FAILED).update(
                payment_status=Order.PaymentStatus.UNPAID, updated_at=timezone.now()
            )
            order.payment_status = Order.PaymentStatus.UNPAID

    amount = to_minor_units(order.total)
    remote_order = gateway.create_order(
        amount=amount,
        currency=intent.currency,
        receipt=order.order_number,
        notes={"order_id": str(order.id), "payment_intent_id": str(intent.id), "tenant_id": str(order.tenant_id)},
    )
    razorpay_order_id = remote_order['id']
    logger.info(f"Razorpay order created: {razorpay_order_id} for order {order.order_number}")

    with transaction.atomic():
        PaymentIntent.objects.filter(pk=intent.pk).update(
            razorpay_order_id=razorpay_order_id,
            status=PaymentIntent.Status.RAZORPAY_ORDER_CREATED,
            updated_at=timezone.now(),
        )
        Order.objects.filter(pk=order.pk).update(razorpay_order_id=razorpay_order_id, updated_at=timezone.now())
        order.razorpay_order_id = razorpay_order_id

    return {
        "key_id": gateway.key_id,
        "razorpay_order_id": razorpay_order_id,
        "amount": amount,
        "currency": intent.currency,
        "order_number": order.order_number,
    }


def verify_payment(order, razorpay_order_id, razorpay_payment_id, signature, gateway=None, cache=None):
    """
    Handles the checkout widget's success callback.

    A valid signature confirms the order (idempotently if a webhook got there
    first). An invalid one marks an unpaid order ``failed`` and raises
    SignatureVerificationError.
    """
    _ensure_online_payment(order)
    gateway = gateway or RazorpayService.for_tenant(order.tenant, cache)

    if order.razorpay_order_id and razorpay_order_id != order.razorpay_order_id:
        logger.warning(f"Razorpay order id mismatch for order {order.order_number}: "
                       f"expected {order.razorpay_order_id}, got {razorpay_order_id}")
        valid = False
    else:
        valid = verify_signature(razorpay_order_id, razorpay_payment_id, signature, gateway.key_secret)

    logger.info(f"Signature verification for order {order.order_number}: {'valid' if valid else 'INVALID'}")

    with transaction.atomic():
        if valid:
            _apply_payment_captured(order, razorpay_payment_id, razorpay_order_id)
            return order
        _apply_payment_failed(order)

    raise SignatureVerificationError("Invalid payment signature")


def mark_payment_failed(order, reason=None):
    """The shopper dismissed the payment widget or the gateway reported a failure."""
    _ensure_online_payment(order)
    with transaction.atomic():
        changed = _apply_payment_failed(order)
    logger.info(f"Payment for order {order.order_number} marked failed ({reason or 'no reason given'}): "
                f"{'updated' if changed else 'no change'}")
    return order


# --- Retry requests ---

def schedule_operation_retry(tenant, operation_type, operation_id, payload, error_message):
    """
    Records (or bumps) a pending retry for an operation that failed while
    being applied. The next attempt is pushed back exponentially; once
    ``max_attempts`` is reached the request is marked exhausted.
    """
    max_attempts = settings.OPERATION_RETRY_MAX_ATTEMPTS
    base_delay = settings.OPERATION_RETRY_BASE_DELAY

    retry, created = OperationRetry.objects.get_or_create(
        operation_type=operation_type,
        operation_id=str(operation_id),
        defaults={
            'tenant': tenant,
            'payload': payload,
            'error_message': error_message,
            'attempts': 1,
            'max_attempts': max_attempts,
            'next_attempt_at': timezone.now() + timedelta(seconds=base_delay),
        },
    )
    if not created:
        retry.attempts += 1
        retry.error_message = error_message
        retry.payload = payload
        retry.next_attempt_at = timezone.now() + timedelta(seconds=base_delay * 2 ** (retry.attempts - 1))
        if retry.attempts >= retry.max_attempts:
            retry.status = OperationRetry.Status.EXHAUSTED
        retry.save()

    logger.warning(f"Scheduled retry #{retry.attempts} for {operation_type} {operation_id}: {error_message}")
    return retry


# --- Webhooks ---

class WebhookReconciler:
    """
    Applies signed Razorpay webhook deliveries to orders.

    ``handle`` authenticates the raw body before reading it, records the
    delivery, and applies the event inside a transaction. Application errors
    become retry requests; the delivery is still acknowledged.
    """
    HANDLED_EVENTS = ('payment.captured', 'payment.failed', 'refund.created', 'refund.processed')

    def __init__(self, secret=None):
        self.secret = secret or settings.RAZORPAY_WEBHOOK_SECRET

    def handle(self, raw_body, signature, event_id=None):
        if not self.secret:
            raise PaymentGatewayNotConfigured("Webhook not configured")

        if not verify_webhook_signature(raw_body, signature, self.secret):
            logger.error("Invalid Razorpay webhook signature")
            raise WebhookAuthenticationError("Invalid signature")

        payload = json.loads(raw_body)
        if not isinstance(payload, dict) or not isinstance(payload.get('payload', {}), dict):
            raise ValueError("Webhook body must be a JSON object")
        event = payload.get('event')
        logger.info(f"Processing Razorpay webhook: {event}")

        if event_id and PaymentWebhook.objects.filter(event_id=event_id).exists():
            logger.info(f"Duplicate webhook delivery {event_id} ({event}); already recorded")
            return {"status": "duplicate"}

        intent, order = self._resolve_targets(payload.get('payload', {}))
        if order is None and intent is None:
            logger.error(f"No order or payment intent matches webhook {event}")
            raise WebhookTargetNotFound("Order not found for webhook")
        if order is None:
            order = intent.order

        payment = self._entity(payload, 'payment')
        refund = self._entity(payload, 'refund')
        remote_order = self._entity(payload, 'order')

        try:
            with transaction.atomic():
                webhook = PaymentWebhook.objects.create(
                    tenant_id=order.tenant_id,
                    payment_intent=intent,
                    order=order,
                    event_id=event_id,
                    webhook_type=event or 'unknown',
                    razorpay_payment_id=payment.get('id') or refund.get('payment_id'),
                    razorpay_order_id=payment.get('order_id') or remote_order.get('id'),
                    payload=payload,
                )
        except IntegrityError:
            logger.info(f"Duplicate webhook delivery {event_id} ({event}); already recorded")
            return {"status": "duplicate"}

        try:
            with transaction.atomic():
                self._dispatch(event, payload, order)
                PaymentWebhook.objects.filter(pk=webhook.pk).update(processed=True, processed_at=timezone.now())
        except Exception as e:
            logger.exception(f"Error processing webhook {webhook.id} ({event}): {e}")
            schedule_operation_retry(
                order.tenant,
                'payment_webhook',
                webhook.id,
                {"webhook_id": webhook.id, "event": event},
                str(e),
            )
            return {"status": "retry_scheduled", "webhook_id": webhook.id}

        return {"status": "processed", "webhook_id": webhook.id}

    @staticmethod
    def _entity(payload, name):
        return (payload.get('payload', {}).get(name) or {}).get('entity') or {}

    def _resolve_targets(self, body):
        payment = (body.get('payment') or {}).get('entity') or {}
        refund = (body.get('refund') or {}).get('entity') or {}
        remote_order = (body.get('order') or {}).get('entity') or {}

        payment_id = payment.get('id') or refund.get('payment_id')
        order_id = payment.get('order_id') or remote_order.get('id')

        lookup = Q()
        if order_id:
            lookup |= Q(razorpay_order_id=order_id)
        if payment_id:
            lookup |= Q(razorpay_payment_id=payment_id)
        if not lookup:
            return None, None

        intent = PaymentIntent.objects.filter(lookup).select_related('order').first()
        order = Order.objects.filter(lookup).first()
        if order is None and intent is not None:
            order = intent.order
        return intent, order

    def _dispatch(self, event, payload, order):
        if event == 'payment.captured':
            payment = self._entity(payload, 'payment')
            _apply_payment_captured(order, payment['id'], payment.get('order_id'), payment.get('amount'))
        elif event == 'payment.failed':
            changed = _apply_payment_failed(order)
            if not changed:
                logger.info(f"payment.failed ignored for order {order.order_number} in state {order.payment_status}")
        elif event == 'refund.created':
            self._refund_created(order, self._entity(payload, 'refund'))
        elif event == 'refund.processed':
            self._refund_processed(order, self._entity(payload, 'refund'))
        else:
            logger.info(f"Unhandled webhook event: {event}")

    def _refund_created(self, order, refund):
        amount = from_minor_units(refund['amount'])
        _, created = Refund.objects.get_or_create(
            razorpay_refund_id=refund['id'],
            defaults={
                'tenant_id': order.tenant_id,
                'order': order,
                'razorpay_payment_id': refund.get('payment_id'),
                'amount': amount,
            },
        )
        if not created:
            logger.info(f"Refund {refund['id']} already recorded for order {order.order_number}")
            return
        Order.objects.filter(pk=order.pk).update(total_refunded=F('total_refunded') + amount, updated_at=timezone.now())
        logger.info(f"Recorded refund {refund['id']} of {amount} for order {order.order_number}")

    def _refund_processed(self, order, refund):
        record = Refund.objects.filter(razorpay_refund_id=refund['id']).first()
        if record is None:
            # refund.processed can arrive first; record it so the amount is counted once.
            self._refund_created(order, refund)
            record = Refund.objects.get(razorpay_refund_id=refund['id'])

        record.status = Refund.Status.PROCESSED if refund.get('status') == 'processed' else Refund.Status.FAILED
        created_at = refund.get('created_at')
        record.processed_at = (datetime.fromtimestamp(created_at, tz=dt_timezone.utc)
                               if created_at else timezone.now())
        record.save(update_fields=['status', 'processed_at'])
        logger.info(f"Refund {refund['id']} for order {order.order_number} is {record.status}")
