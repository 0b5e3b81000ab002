from django.db import models

from tenants.models import Tenant
from orders.models import Order


class Shipment(models.Model):
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='shipments')
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='shipments')
    shiprocket_order_id = models.CharField(max_length=255, null=True, blank=True, db_index=True)
    shipment_id = models.CharField(max_length=255, null=True, blank=True, db_index=True)
    awb_code = models.CharField(max_length=255, blank=True)
    courier_name = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=100, blank=True)
    last_tracking_status = models.CharField(max_length=100, blank=True)
    last_tracking_update_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Shipment {self.shipment_id or self.shiprocket_order_id} for order {self.order.order_number}"


class ShippingWebhook(models.Model):
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='shipping_webhooks')
    shipment = models.ForeignKey(Shipment, on_delete=models.SET_NULL, null=True, blank=True, related_name='webhooks')
    order = models.ForeignKey(Order, on_delete=models.SET_NULL, null=True, blank=True, related_name='shipping_webhooks')
    webhook_type = models.CharField(max_length=100)
    shiprocket_event_id = models.CharField(max_length=255, blank=True)
    payload = models.JSONField(default=dict)
    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']


class TrackingUpdate(models.Model):
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='tracking_updates')
    shipment = models.ForeignKey(Shipment, on_delete=models.CASCADE, related_name='tracking_updates')
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='tracking_updates')
    status = models.CharField(max_length=100)
    location = models.CharField(max_length=255, blank=True)
    timestamp = models.DateTimeField()
    courier_name = models.CharField(max_length=255, blank=True)
    awb_code = models.CharField(max_length=255, blank=True)
    raw_data = models.JSONField(default=dict)

    class Meta:
        ordering = ['-timestamp']
