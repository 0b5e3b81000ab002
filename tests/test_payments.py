import hashlib
import hmac
import json
from decimal import Decimal
from unittest import mock

import pytest
import requests

from storefront_backend.exceptions import (
    PaymentGatewayError,
    PaymentGatewayNotConfigured,
    PaymentStateConflict,
    SignatureVerificationError,
)
from orders.models import Order
from orders.services import add_to_cart, get_or_create_cart, place_order
from payments.models import PaymentIntent, PaymentReconciliation
from payments.services import (
    RazorpayService,
    compute_signature,
    create_remote_order,
    mark_payment_failed,
    to_minor_units,
    verify_payment,
    verify_signature,
    verify_webhook_signature,
)
from .conftest import RAZORPAY_KEY_SECRET


def sign(order_id, payment_id, secret=RAZORPAY_KEY_SECRET):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def online_order(tenant, integration, make_product, customer, shipping_address, razorpay_response):
    cart = get_or_create_cart(tenant)
    add_to_cart(cart, make_product(price='250.00'), 2)
    order, _ = place_order(tenant, cart, customer, shipping_address, 'razorpay')
    return Order.objects.get(pk=order.pk)


def test_to_minor_units():
    assert to_minor_units(Decimal('499.99')) == 49999
    assert to_minor_units('0.005') == 1


def test_signature_matches_known_hmac_sha256_digest():
    # RFC 4231, test case 2.
    expected = '5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843'
    assert compute_signature('what do ya want for nothing?', 'Jefe') == expected
    assert verify_webhook_signature(b'what do ya want for nothing?', expected, 'Jefe')
    assert not verify_webhook_signature(b'what do ya want for nothing?', expected.upper(), 'jefe')


def test_signature_covers_order_and_payment_ids():
    signature = sign('order_1', 'pay_1')
    assert compute_signature('order_1|pay_1', RAZORPAY_KEY_SECRET) == signature
    assert verify_signature('order_1', 'pay_1', signature, RAZORPAY_KEY_SECRET)


def test_signature_rejects_tampering():
    signature = sign('order_1', 'pay_1')
    flipped = ('1' if signature[0] == '0' else '0') + signature[1:]
    assert not verify_signature('order_1', 'pay_1', flipped, RAZORPAY_KEY_SECRET)
    assert not verify_signature('order_1', 'pay_2', signature, RAZORPAY_KEY_SECRET)
    assert not verify_signature('order_1', 'pay_1', signature, 'other_secret')
    assert not verify_signature('order_1', 'pay_1', '', RAZORPAY_KEY_SECRET)


def test_service_requires_credentials(tenant):
    with pytest.raises(PaymentGatewayNotConfigured):
        RazorpayService('', 'secret')
    with pytest.raises(PaymentGatewayNotConfigured):
        RazorpayService.for_tenant(tenant)


def test_gateway_http_error_is_wrapped(integration):
    service = RazorpayService.for_tenant(integration.tenant)
    error_response = mock.Mock(status_code=400, text='{"error": {"description": "bad amount"}}')
    with mock.patch('payments.services.requests.request') as request:
        request.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError(response=error_response)
        with pytest.raises(PaymentGatewayError) as excinfo:
            service.create_order(100, 'INR', 'ORD-1')
    assert excinfo.value.status_code == 502
    assert excinfo.value.details == {'gateway_status': 400}


def test_gateway_unreachable_is_wrapped(integration):
    service = RazorpayService.for_tenant(integration.tenant)
    with mock.patch('payments.services.requests.request', side_effect=requests.exceptions.ConnectionError('down')):
        with pytest.raises(PaymentGatewayError):
            service.create_order(100, 'INR', 'ORD-1')


def test_gateway_outage_at_checkout_keeps_order(tenant, integration, make_product, customer, shipping_address):
    cart = get_or_create_cart(tenant)
    add_to_cart(cart, make_product(), 1)
    with mock.patch('payments.services.requests.request', side_effect=requests.exceptions.Timeout('slow')):
        order, payment = place_order(tenant, cart, customer, shipping_address, 'razorpay')

    assert payment is None
    order.refresh_from_db()
    assert order.payment_status == Order.PaymentStatus.UNPAID
    assert order.payment_intent.status == PaymentIntent.Status.INITIATED


def test_verify_payment_confirms_order(online_order):
    verify_payment(online_order, 'order_RZP123', 'pay_1', sign('order_RZP123', 'pay_1'))

    online_order.refresh_from_db()
    assert (online_order.status, online_order.payment_status) == ('confirmed', 'paid')
    assert online_order.razorpay_payment_id == 'pay_1'
    assert online_order.payment_intent.status == PaymentIntent.Status.PAID
    reconciliation = PaymentReconciliation.objects.get(razorpay_payment_id='pay_1')
    assert reconciliation.status == PaymentReconciliation.Status.MATCHED
    assert reconciliation.expected_amount == Decimal('500.00')


def test_verify_payment_is_idempotent(online_order):
    signature = sign('order_RZP123', 'pay_1')
    verify_payment(online_order, 'order_RZP123', 'pay_1', signature)
    verify_payment(online_order, 'order_RZP123', 'pay_1', signature)

    assert PaymentReconciliation.objects.filter(order=online_order).count() == 1


def test_invalid_signature_fails_unpaid_order(online_order):
    with pytest.raises(SignatureVerificationError):
        verify_payment(online_order, 'order_RZP123', 'pay_1', 'deadbeef')

    online_order.refresh_from_db()
    assert online_order.payment_status == Order.PaymentStatus.FAILED
    assert online_order.status == Order.Status.PENDING


def test_signature_for_another_order_is_invalid(online_order):
    with pytest.raises(SignatureVerificationError):
        verify_payment(online_order, 'order_OTHER', 'pay_1', sign('order_OTHER', 'pay_1'))


def test_paid_is_terminal(online_order):
    verify_payment(online_order, 'order_RZP123', 'pay_1', sign('order_RZP123', 'pay_1'))

    with pytest.raises(SignatureVerificationError):
        verify_payment(online_order, 'order_RZP123', 'pay_2', 'bogus')
    mark_payment_failed(online_order, 'dismissed')

    online_order.refresh_from_db()
    assert online_order.payment_status == Order.PaymentStatus.PAID


def test_retry_after_failure_reuses_order(online_order, razorpay_response):
    mark_payment_failed(online_order, 'dismissed')
    online_order.refresh_from_db()
    assert online_order.payment_status == Order.PaymentStatus.FAILED

    razorpay_response.return_value.json.return_value = {'id': 'order_RZP456'}
    payment = create_remote_order(online_order)

    online_order.refresh_from_db()
    assert payment['razorpay_order_id'] == 'order_RZP456'
    assert payment['amount'] == 50000
    assert online_order.payment_status == Order.PaymentStatus.UNPAID
    assert online_order.razorpay_order_id == 'order_RZP456'
    assert PaymentIntent.objects.filter(order=online_order).count() == 1
    assert Order.objects.count() == 1


def test_paid_or_cod_orders_are_not_payable(online_order, tenant, make_product, customer, shipping_address):
    verify_payment(online_order, 'order_RZP123', 'pay_1', sign('order_RZP123', 'pay_1'))
    online_order.refresh_from_db()
    with pytest.raises(PaymentStateConflict):
        create_remote_order(online_order)

    cart = get_or_create_cart(tenant)
    add_to_cart(cart, make_product(), 1)
    cod_order, _ = place_order(tenant, cart, customer, shipping_address, 'cod')
    with pytest.raises(PaymentStateConflict):
        create_remote_order(cod_order)


def test_payment_endpoints(client, tenant, online_order, razorpay_response):
    base = f'/api/stores/{tenant.store_slug}/orders/{online_order.order_number}'

    pay = client.post(f'{base}/pay/')
    assert pay.status_code == 200
    assert pay.json()['payment']['razorpay_order_id'] == 'order_RZP123'

    bad = client.post(f'{base}/verify/', data=json.dumps({
        'razorpay_order_id': 'order_RZP123', 'razorpay_payment_id': 'pay_1', 'razorpay_signature': 'nope',
    }), content_type='application/json')
    assert bad.status_code == 400
    assert bad.json() == {'error': 'Invalid payment signature'}

    # A failed attempt is retried against the same order.
    assert client.post(f'{base}/pay/').status_code == 200

    good = client.post(f'{base}/verify/', data=json.dumps({
        'razorpay_order_id': 'order_RZP123', 'razorpay_payment_id': 'pay_1',
        'razorpay_signature': sign('order_RZP123', 'pay_1'),
    }), content_type='application/json')
    assert good.status_code == 200
    assert good.json()['order']['payment_status'] == 'paid'

    assert client.post(f'{base}/pay/').status_code == 409
    assert client.post(f'/api/stores/{tenant.store_slug}/orders/ORD-MISSING/pay/').status_code == 404


def test_cancel_payment_endpoint(client, tenant, online_order):
    response = client.post(
        f'/api/stores/{tenant.store_slug}/orders/{online_order.order_number}/cancel-payment/',
        data=json.dumps({'reason': 'closed widget'}),
        content_type='application/json',
    )
    assert response.status_code == 200
    assert response.json()['order']['payment_status'] == 'failed'


@pytest.fixture
def cod_order(tenant, integration, make_product, customer, shipping_address):
    cart = get_or_create_cart(tenant)
    add_to_cart(cart, make_product(), 1)
    order, _ = place_order(tenant, cart, customer, shipping_address, 'cod')
    return Order.objects.get(pk=order.pk)


def test_cod_order_cannot_be_failed_through_payment_callbacks(cod_order):
    with pytest.raises(PaymentStateConflict):
        mark_payment_failed(cod_order, 'dismissed')
    with pytest.raises(PaymentStateConflict):
        verify_payment(cod_order, 'order_RZP123', 'pay_1', 'deadbeef')

    cod_order.refresh_from_db()
    assert cod_order.payment_status == Order.PaymentStatus.UNPAID
    assert cod_order.status == Order.Status.PENDING


def test_cod_order_payment_endpoints_conflict(client, tenant, cod_order):
    base = f'/api/stores/{tenant.store_slug}/orders/{cod_order.order_number}'

    cancel = client.post(f'{base}/cancel-payment/', data=json.dumps({'reason': 'closed widget'}),
                         content_type='application/json')
    assert cancel.status_code == 409

    verify = client.post(f'{base}/verify/', data=json.dumps({
        'razorpay_order_id': 'order_RZP123', 'razorpay_payment_id': 'pay_1', 'razorpay_signature': 'nope',
    }), content_type='application/json')
    assert verify.status_code == 409

    cod_order.refresh_from_db()
    assert cod_order.payment_status == Order.PaymentStatus.UNPAID
