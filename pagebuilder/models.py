from django.db import models

from tenants.models import Tenant


def empty_layout():
    return {'sections': []}


class HomepageLayout(models.Model):
    # One document per tenant, written as a whole; see pagebuilder.blocks for its shape.
    tenant = models.OneToOneField(Tenant, on_delete=models.CASCADE, related_name='homepage_layout')
    layout_data = models.JSONField(default=empty_layout)

    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Homepage layout for {self.tenant.store_slug} ({len(self.layout_data.get('sections', []))} sections)"
