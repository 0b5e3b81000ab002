import logging

from django.db import DatabaseError

from storefront_backend.exceptions import LayoutPersistenceError
from .blocks import normalize_layout, validate_layout
from .models import HomepageLayout, empty_layout

logger = logging.getLogger(__name__)


def load_layout(tenant):
    """
    Returns the tenant's saved homepage layout.

    A tenant that never saved one gets ``{"sections": []}``; the storefront
    then renders its default homepage.
    """
    layout = HomepageLayout.objects.filter(tenant=tenant).values_list('layout_data', flat=True).first()
    if layout is None:
        logger.info(f"No homepage layout saved yet for tenant {tenant.id}")
        return empty_layout()
    return layout


def save_layout(tenant, layout):
    """
    Upserts the full layout document for a tenant.

    The last writer wins: there is no version check, so a concurrent editor's
    unsaved changes are overwritten. Database failures are raised as
    LayoutPersistenceError and leave the caller's copy untouched.
    """
    validate_layout(layout)
    document = normalize_layout(layout)

    try:
        _, created = HomepageLayout.objects.update_or_create(
            tenant=tenant,
            defaults={'layout_data': document},
        )
    except DatabaseError as e:
        logger.error(f"Failed to save homepage layout for tenant {tenant.id}: {e}")
        raise LayoutPersistenceError("Failed to save layout. Please try again.")

    logger.info(f"{'Created' if created else 'Updated'} homepage layout for tenant {tenant.id} with {len(document['sections'])} sections")
    return document
