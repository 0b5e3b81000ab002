import json
from decimal import Decimal

import pytest

from storefront_backend.exceptions import CartNotActive, CheckoutValidationError
from orders.models import Cart
from orders.services import (
    add_to_cart,
    cart_subtotal,
    clear_cart,
    get_active_cart,
    get_or_create_cart,
    remove_cart_item,
    update_cart_item,
)

pytestmark = pytest.mark.django_db


def test_get_or_create_cart_reuses_active_cart(tenant):
    cart = get_or_create_cart(tenant)
    assert get_or_create_cart(tenant, str(cart.id)) == cart


def test_get_active_cart_ignores_unknown_ids(tenant, other_tenant):
    cart = get_or_create_cart(tenant)
    assert get_active_cart(tenant, 'not-a-uuid') is None
    assert get_active_cart(other_tenant, cart.id) is None

    Cart.objects.filter(pk=cart.pk).update(status=Cart.Status.CONVERTED)
    assert get_active_cart(tenant, cart.id) is None


def test_adding_same_product_accumulates_quantity(tenant, make_product):
    product = make_product(price='100.00')
    cart = get_or_create_cart(tenant)

    add_to_cart(cart, product, 1)
    add_to_cart(cart, product, 2)

    assert cart.items.count() == 1
    assert cart.items.get().qty == 3


def test_unit_price_is_captured_when_first_added(tenant, make_product):
    product = make_product(price='100.00')
    cart = get_or_create_cart(tenant)
    add_to_cart(cart, product, 1)

    product.price = Decimal('150.00')
    product.save()
    add_to_cart(cart, product, 1)

    item = cart.items.get()
    assert item.unit_price == Decimal('100.00')
    assert cart_subtotal(cart) == Decimal('200.00')


def test_add_rejects_foreign_or_inactive_products(tenant, other_tenant, make_product):
    cart = get_or_create_cart(tenant)
    with pytest.raises(CheckoutValidationError):
        add_to_cart(cart, make_product(owner=other_tenant), 1)
    with pytest.raises(CheckoutValidationError):
        add_to_cart(cart, make_product(is_active=False), 1)
    with pytest.raises(CheckoutValidationError):
        add_to_cart(cart, make_product(), 0)


def test_update_to_zero_removes_line(tenant, make_product):
    cart = get_or_create_cart(tenant)
    item = add_to_cart(cart, make_product(), 2)

    update_cart_item(cart, item.id, 5)
    assert cart.items.get().qty == 5

    update_cart_item(cart, item.id, 0)
    assert not cart.items.exists()


def test_remove_and_clear(tenant, make_product):
    cart = get_or_create_cart(tenant)
    first = add_to_cart(cart, make_product(), 1)
    add_to_cart(cart, make_product(), 1)

    remove_cart_item(cart, first.id)
    assert cart.items.count() == 1

    clear_cart(cart)
    assert cart_subtotal(cart) == Decimal('0.00')


def test_converted_cart_is_read_only(tenant, make_product):
    cart = get_or_create_cart(tenant)
    cart.status = Cart.Status.CONVERTED
    cart.save()

    with pytest.raises(CartNotActive):
        add_to_cart(cart, make_product(), 1)
    with pytest.raises(CartNotActive):
        clear_cart(cart)


def test_cart_endpoints(client, tenant, make_product):
    product = make_product(price='49.50')
    base = f'/api/stores/{tenant.store_slug}/cart/'

    created = client.post(base, data='{}', content_type='application/json')
    assert created.status_code == 201
    cart_id = created.json()['id']

    added = client.post(f'{base}{cart_id}/items/', data=json.dumps({'product_id': str(product.id), 'qty': 2}),
                        content_type='application/json')
    assert added.status_code == 200
    body = added.json()
    assert body['item_count'] == 2
    assert body['subtotal'] == '99.00'

    item_id = body['items'][0]['id']
    patched = client.patch(f'{base}{cart_id}/items/{item_id}/', data=json.dumps({'qty': 1}),
                           content_type='application/json')
    assert patched.json()['subtotal'] == '49.50'

    deleted = client.delete(f'{base}{cart_id}/items/{item_id}/')
    assert deleted.json()['items'] == []

    assert client.get(f'{base}{cart_id}/').json()['id'] == cart_id


def test_cart_endpoint_unknown_cart_and_product(client, tenant):
    base = f'/api/stores/{tenant.store_slug}/cart/'
    missing = '00000000-0000-0000-0000-000000000000'
    assert client.get(f'{base}{missing}/').status_code == 404

    cart_id = client.post(base, data='{}', content_type='application/json').json()['id']
    response = client.post(f'{base}{cart_id}/items/', data=json.dumps({'product_id': 'nope'}),
                           content_type='application/json')
    assert response.status_code == 404


@pytest.mark.parametrize('qty', [[1], 1.5, True, {'n': 1}, 'two'])
def test_cart_endpoints_reject_malformed_quantities(client, tenant, product, qty):
    base = f'/api/stores/{tenant.store_slug}/cart/'
    cart_id = client.post(base, data='{}', content_type='application/json').json()['id']

    added = client.post(f'{base}{cart_id}/items/', data=json.dumps({'product_id': str(product.id), 'qty': qty}),
                        content_type='application/json')
    assert added.status_code == 400

    item_id = client.post(f'{base}{cart_id}/items/', data=json.dumps({'product_id': str(product.id)}),
                          content_type='application/json').json()['items'][0]['id']
    patched = client.patch(f'{base}{cart_id}/items/{item_id}/', data=json.dumps({'qty': qty}),
                           content_type='application/json')
    assert patched.status_code == 400
    assert client.get(f'{base}{cart_id}/').json()['item_count'] == 1
