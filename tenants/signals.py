from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver

from .models import Tenant, TenantIntegration
from .services import cache_key, invalidate_tenant_cache, tenant_cache


@receiver(pre_save, sender=Tenant)
def remember_previous_slug(sender, instance, **kwargs):
    # None for a new store.
    instance._previous_slug = (
        Tenant.objects.filter(pk=instance.pk).values_list('store_slug', flat=True).first()
    )


@receiver(post_save, sender=Tenant)
@receiver(post_delete, sender=Tenant)
def drop_cached_tenant(sender, instance, **kwargs):
    invalidate_tenant_cache(instance, tenant_cache(), getattr(instance, '_previous_slug', None))


@receiver(post_save, sender=TenantIntegration)
@receiver(post_delete, sender=TenantIntegration)
def drop_cached_integration(sender, instance, **kwargs):
    # tenant_id only; on a cascading delete the tenant row may already be gone.
    tenant_cache().delete(cache_key('integration', instance.tenant_id))
