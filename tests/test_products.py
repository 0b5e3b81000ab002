import logging

import pytest

from storefront_backend.exceptions import InsufficientStockError
from products.models import Product
from products.services import decrement_stock, products_for_collection

pytestmark = pytest.mark.django_db


def test_clamp_policy_floors_stock_at_zero(make_product):
    product = make_product(stock_qty=1)
    decrement_stock(product.id, 2, policy='clamp')

    product.refresh_from_db()
    assert product.stock_qty == 0
    assert product.sales_count == 2


def test_strict_policy_refuses_oversell(make_product):
    product = make_product(stock_qty=1)
    with pytest.raises(InsufficientStockError):
        decrement_stock(product.id, 2, policy='strict')

    decrement_stock(product.id, 1, policy='strict')
    product.refresh_from_db()
    assert product.stock_qty == 0


def test_collections(tenant, make_product):
    featured = make_product(is_featured=True)
    seller = make_product(sales_count=5)
    make_product(is_active=False, is_featured=True)

    assert products_for_collection(tenant, 'featured', 10) == [featured]
    assert products_for_collection(tenant, 'best_sellers', 10) == [seller]
    assert len(products_for_collection(tenant, 'recent', 10)) == 2


def test_list_products_endpoint(client, tenant, other_tenant, make_product, category):
    make_product(name='Running Shoe', category=category)
    make_product(name='Umbrella')
    make_product(name='Not ours', owner=other_tenant)
    base = f'/api/stores/{tenant.store_slug}/products/'

    names = {p['name'] for p in client.get(base).json()['products']}
    assert names == {'Running Shoe', 'Umbrella'}

    by_category = client.get(base, {'category': 'shoes'}).json()['products']
    assert [p['name'] for p in by_category] == ['Running Shoe']

    assert client.get(base, {'q': 'umbr'}).json()['products'][0]['name'] == 'Umbrella'
    assert client.get(base, {'collection': 'bogus'}).status_code == 400
    assert client.get(base, {'limit': 'ten'}).status_code == 400


def test_requests_are_timed(client, tenant, caplog):
    with caplog.at_level(logging.INFO, logger='storefront_backend.middleware'):
        client.get(f'/api/stores/{tenant.store_slug}/products/')

    assert any(f'GET /api/stores/{tenant.store_slug}/products/ -> 200' in r.getMessage() for r in caplog.records)
