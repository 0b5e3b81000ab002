import logging

from django.core.cache import caches

from storefront_backend.exceptions import TenantInactive, TenantNotFound
from .models import Tenant, TenantIntegration

logger = logging.getLogger(__name__)

TENANT_CACHE_TTL = 300
INTEGRATION_CACHE_TTL = 600


def tenant_cache():
    """The process-wide cache the views pass into the lookups below."""
    return caches['tenants']


def cache_key(prefix, *parts):
    values = [str(p) for p in parts if p is not None]
    return ':'.join([prefix, *values])


def get_tenant_by_slug(slug, cache):
    """
    Returns the active tenant for a store slug, or None.

    Inactive stores are not cached so that reactivation is picked up on the
    next request.
    """
    key = cache_key('tenant', slug)
    tenant = cache.get(key)
    if tenant is not None:
        return tenant

    tenant = Tenant.objects.filter(store_slug=slug, is_active=True).first()
    if tenant is not None:
        cache.set(key, tenant, TENANT_CACHE_TTL)
    return tenant


def resolve_tenant(slug, cache, require_subscription=True):
    """
    Resolves the store a request is addressed to.

    Raises TenantNotFound for unknown or disabled stores and TenantInactive
    when the trial has lapsed without a pro plan.
    """
    tenant = get_tenant_by_slug(slug, cache)
    if tenant is None:
        logger.warning(f"Tenant not found for slug '{slug}'")
        raise TenantNotFound("Store not found")

    if require_subscription and not tenant.has_active_subscription:
        logger.warning(f"Tenant {tenant.id} ({slug}) has no active subscription")
        raise TenantInactive("Store subscription expired")
    return tenant


def get_tenant_integration(tenant, cache):
    key = cache_key('integration', tenant.id)
    integration = cache.get(key)
    if integration is not None:
        return integration

    integration = TenantIntegration.objects.filter(tenant=tenant).first()
    if integration is not None:
        cache.set(key, integration, INTEGRATION_CACHE_TTL)
    return integration


def invalidate_tenant_cache(tenant, cache, previous_slug=None):
    keys = [cache_key('tenant', tenant.store_slug), cache_key('integration', tenant.id)]
    if previous_slug and previous_slug != tenant.store_slug:
        keys.append(cache_key('tenant', previous_slug))
    cache.delete_many(keys)
    logger.info(f"Invalidated cached lookups for tenant {tenant.id}")
