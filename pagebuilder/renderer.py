import logging
import re

from bs4 import BeautifulSoup

from storefront_backend.exceptions import LayoutValidationError
from products.models import Brand, Category
from products.services import PRODUCT_COLLECTIONS, products_for_collection, serialize_product
from .blocks import validate_block

logger = logging.getLogger(__name__)

BLOCKED_TAGS = ('script', 'iframe', 'object', 'embed', 'style', 'link', 'meta', 'base')
URL_ATTRIBUTES = ('href', 'src', 'action', 'formaction', 'xlink:href')
MAX_LISTING_LIMIT = 48


def sanitize_html(html):
    """
    Strips active content from merchant-supplied HTML: blocked elements,
    ``on*`` event handlers and ``javascript:`` URLs.
    """
    soup = BeautifulSoup(html or '', 'html.parser')

    for tag in soup.find_all(BLOCKED_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith('on'):
                del tag.attrs[attr]
            elif attr.lower() in URL_ATTRIBUTES:
                value = str(tag.attrs[attr]).strip().lower().replace(' ', '')
                if value.startswith(('javascript:', 'vbscript:', 'data:text/html')):
                    del tag.attrs[attr]

    return str(soup)


def sanitize_css(css):
    # The stylesheet is emitted inside a <style> element.
    return re.sub(r'</?\s*style', '', css or '', flags=re.IGNORECASE)


def _listing_limit(data):
    try:
        limit = int(data.get('limit', 8))
    except (TypeError, ValueError):
        limit = 8
    return max(0, min(limit, MAX_LISTING_LIMIT))


def _render_products(tenant, data):
    collection = data.get('collection', 'featured')
    if collection not in PRODUCT_COLLECTIONS:
        collection = 'featured'
    products = products_for_collection(tenant, collection, _listing_limit(data))
    return {**data, 'products': [serialize_product(p) for p in products]}


def _render_categories(tenant, data):
    categories = Category.objects.filter(tenant=tenant)[:_listing_limit(data)]
    return {**data, 'categories': [
        {'name': c.name, 'slug': c.slug, 'image_url': c.image_url} for c in categories
    ]}


def _render_brands(tenant, data):
    brands = Brand.objects.filter(tenant=tenant, is_active=True)[:_listing_limit(data)]
    return {**data, 'brands': [
        {'name': b.name, 'slug': b.slug, 'logo_url': b.logo_url} for b in brands
    ]}


def _render_custom_html(tenant, data):
    return {'html': sanitize_html(data.get('html')), 'css': sanitize_css(data.get('css'))}


DATA_RESOLVERS = {
    'products': _render_products,
    'categories': _render_categories,
    'brands': _render_brands,
    'customHtml': _render_custom_html,
}


def render_layout(tenant, layout):
    """
    Turns a stored layout into the sections the storefront homepage draws,
    in ``order``. Blocks that fail validation are skipped so that one broken
    section never takes the whole homepage down.
    """
    valid = []
    for block in layout.get('sections', []):
        try:
            validate_block(block)
        except LayoutValidationError as e:
            block_id = block.get('id') if isinstance(block, dict) else None
            logger.warning(f"Skipping invalid block {block_id} for tenant {tenant.id}: {e}")
            continue
        valid.append(block)

    sections = []
    for block in sorted(valid, key=lambda b: b['order']):
        resolver = DATA_RESOLVERS.get(block['type'])
        data = resolver(tenant, block['data']) if resolver else block['data']
        sections.append({
            'id': block['id'],
            'type': block['type'],
            'styles': block.get('styles', {}),
            'data': data,
        })
    return sections
