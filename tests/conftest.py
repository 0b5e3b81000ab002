from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.core.cache import caches
from django.utils import timezone

from tenants.models import Tenant, TenantIntegration
from products.models import Brand, Category, Product

RAZORPAY_KEY_ID = 'rzp_test_key'
RAZORPAY_KEY_SECRET = 'rzp_test_secret'
WEBHOOK_SECRET = 'webhook_secret'


@pytest.fixture(autouse=True)
def clear_caches():
    caches['default'].clear()
    caches['tenants'].clear()
    yield
    caches['tenants'].clear()


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(
        store_name='Test Store',
        store_slug='test-store',
        plan=Tenant.Plan.PRO,
    )


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(
        store_name='Other Store',
        store_slug='other-store',
        plan=Tenant.Plan.PRO,
    )


@pytest.fixture
def expired_tenant(db):
    return Tenant.objects.create(
        store_name='Lapsed Store',
        store_slug='lapsed-store',
        plan=Tenant.Plan.TRIAL,
        trial_ends_at=timezone.now() - timedelta(days=1),
    )


@pytest.fixture
def integration(tenant):
    return TenantIntegration.objects.create(
        tenant=tenant,
        razorpay_key_id=RAZORPAY_KEY_ID,
        razorpay_key_secret=RAZORPAY_KEY_SECRET,
    )


@pytest.fixture
def category(tenant):
    return Category.objects.create(tenant=tenant, name='Shoes', slug='shoes')


@pytest.fixture
def brand(tenant):
    return Brand.objects.create(tenant=tenant, name='Acme', slug='acme')


@pytest.fixture
def make_product(tenant):
    counter = {'n': 0}

    def _make(price='100.00', stock_qty=10, owner=None, **kwargs):
        counter['n'] += 1
        return Product.objects.create(
            tenant=owner or tenant,
            name=kwargs.pop('name', f"Product {counter['n']}"),
            slug=kwargs.pop('slug', f"product-{counter['n']}"),
            price=Decimal(price),
            stock_qty=stock_qty,
            **kwargs,
        )

    return _make


@pytest.fixture
def product(make_product):
    return make_product(price='100.00', stock_qty=1)


@pytest.fixture
def customer():
    return {'name': 'Asha Rao', 'phone': '9876543210', 'email': 'asha@example.com'}


@pytest.fixture
def shipping_address():
    return {'line1': '12 MG Road', 'line2': '', 'city': 'Bengaluru', 'state': 'KA', 'pincode': '560001'}


@pytest.fixture
def razorpay_response():
    """Patches the HTTP call behind RazorpayService with a successful order creation."""
    with mock.patch('payments.services.requests.request') as request:
        response = mock.Mock()
        response.raise_for_status.return_value = None
        response.json.return_value = {'id': 'order_RZP123', 'status': 'created'}
        request.return_value = response
        yield request
