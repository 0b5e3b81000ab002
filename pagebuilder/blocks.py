"""
Homepage blocks.

A block is a plain JSON object so that a whole layout can be stored as one
document::

    {"id": "<uuid4>", "type": "products", "order": 0,
     "styles": {"padding": {"top": "16px"}, "textAlign": "center"},
     "data": {"title": "Featured Products", "collection": "featured", ...}}

``type`` selects the shape of ``data``; DEFAULT_BLOCK_DATA holds the payload
every new block of that type starts with.
"""
import copy
import uuid

from storefront_backend.exceptions import LayoutValidationError

BLOCK_TYPES = (
    'hero',
    'products',
    'categories',
    'brands',
    'customHtml',
    'text',
    'image',
    'video',
    'testimonial',
    'feature',
    'cta',
    'spacer',
)

DEFAULT_BLOCK_DATA = {
    'hero': {
        'title': 'Welcome to Our Store',
        'subtitle': 'Discover amazing products',
        'imageUrl': '',
        'ctaText': 'Shop Now',
        'ctaUrl': '/products',
    },
    'products': {
        'title': 'Featured Products',
        'collection': 'featured',
        'limit': 8,
        'layout': 'grid',
    },
    'categories': {
        'title': 'Shop by Category',
        'limit': 8,
        'layout': 'grid',
    },
    'brands': {
        'title': 'Our Brands',
        'limit': 8,
        'layout': 'carousel',
    },
    'customHtml': {
        'html': '<div>Custom HTML</div>',
        'css': 'div { color: #000; }',
    },
    'text': {
        'content': 'Enter your text here',
    },
    'image': {
        'imageUrl': '',
        'alt': 'Image',
    },
    'video': {
        'videoUrl': '',
        'autoplay': False,
    },
    'testimonial': {
        'quote': 'Great products and fast delivery!',
        'author': 'Happy Customer',
    },
    'feature': {
        'title': 'Why Shop With Us',
        'description': 'Everything you need, delivered to your door',
        'features': [
            {'title': 'Fast Delivery', 'description': 'Orders shipped within 24 hours'},
            {'title': 'Secure Payments', 'description': 'Pay online or cash on delivery'},
        ],
    },
    'cta': {
        'title': 'Call to Action',
        'buttonText': 'Get Started',
        'buttonUrl': '/',
    },
    'spacer': {
        'height': '50px',
    },
}

STYLE_KEYS = {'width', 'height', 'padding', 'margin', 'backgroundColor', 'textAlign'}
BOX_SIDES = {'top', 'right', 'bottom', 'left'}
TEXT_ALIGNMENTS = {'left', 'center', 'right'}


def default_block_data(block_type):
    if block_type not in DEFAULT_BLOCK_DATA:
        raise ValueError(f"Unknown block type: {block_type}")
    return copy.deepcopy(DEFAULT_BLOCK_DATA[block_type])


def new_block(block_type, order):
    return {
        'id': str(uuid.uuid4()),
        'type': block_type,
        'order': order,
        'styles': {},
        'data': default_block_data(block_type),
    }


def validate_styles(styles):
    if not isinstance(styles, dict):
        raise LayoutValidationError("Block styles must be an object")

    unknown = set(styles) - STYLE_KEYS
    if unknown:
        raise LayoutValidationError(f"Unknown style properties: {sorted(unknown)}")

    for box in ('padding', 'margin'):
        if box not in styles:
            continue
        sides = styles[box]
        if not isinstance(sides, dict) or set(sides) - BOX_SIDES:
            raise LayoutValidationError(f"'{box}' must be an object with keys among {sorted(BOX_SIDES)}")
        if not all(isinstance(v, str) for v in sides.values()):
            raise LayoutValidationError(f"'{box}' values must be CSS length strings")

    for key in ('width', 'height', 'backgroundColor'):
        if key in styles and not isinstance(styles[key], str):
            raise LayoutValidationError(f"'{key}' must be a string")

    if 'textAlign' in styles and styles['textAlign'] not in TEXT_ALIGNMENTS:
        raise LayoutValidationError(f"'textAlign' must be one of {sorted(TEXT_ALIGNMENTS)}")


def validate_block(block):
    if not isinstance(block, dict):
        raise LayoutValidationError("Each section must be an object")

    for field in ('id', 'type', 'order', 'data'):
        if field not in block:
            raise LayoutValidationError(f"Section is missing '{field}'")

    if block['type'] not in BLOCK_TYPES:
        raise LayoutValidationError(f"Unknown block type: {block['type']}")
    if not isinstance(block['id'], str) or not block['id']:
        raise LayoutValidationError("Section id must be a non-empty string")
    # bool is an int subclass
    if not isinstance(block['order'], int) or isinstance(block['order'], bool):
        raise LayoutValidationError("Section order must be an integer")
    if not isinstance(block['data'], dict):
        raise LayoutValidationError("Section data must be an object")

    validate_styles(block.get('styles', {}))


def validate_layout(layout):
    if not isinstance(layout, dict) or not isinstance(layout.get('sections'), list):
        raise LayoutValidationError("Layout must be an object with a 'sections' list")

    seen = set()
    for block in layout['sections']:
        validate_block(block)
        if block['id'] in seen:
            raise LayoutValidationError(f"Duplicate section id: {block['id']}")
        seen.add(block['id'])


def normalize_layout(layout):
    """Sorts sections by their order and rewrites each order to its index."""
    sections = sorted(layout['sections'], key=lambda b: b['order'])
    normalized = []
    for index, block in enumerate(sections):
        block = {**block, 'order': index}
        block.setdefault('styles', {})
        normalized.append(block)
    return {'sections': normalized}
