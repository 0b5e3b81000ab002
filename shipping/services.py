import logging

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from storefront_backend.exceptions import WebhookTargetNotFound
from orders.models import Order
from payments.services import schedule_operation_retry
from .models import Shipment, ShippingWebhook, TrackingUpdate

logger = logging.getLogger(__name__)

# Shiprocket status -> order status. Anything else leaves the order alone.
ORDER_STATUS_BY_SHIPMENT_STATUS = {
    'delivered': Order.Status.DELIVERED,
    'out_for_delivery': Order.Status.SHIPPED,
    'in_transit': Order.Status.SHIPPED,
    'rto': Order.Status.CANCELLED,
}


def order_status_for(shipment_status):
    if not shipment_status:
        return None
    return ORDER_STATUS_BY_SHIPMENT_STATUS.get(shipment_status.strip().lower())


class ShiprocketReconciler:
    """
    Applies Shiprocket tracking webhooks to shipments and their orders.
    """

    def handle(self, payload):
        shipment = self._resolve_shipment(payload)
        if shipment is None:
            logger.error(f"Shipment not found for webhook (order_id={payload.get('order_id')}, "
                         f"shipment_id={payload.get('shipment_id')})")
            raise WebhookTargetNotFound("Shipment not found")

        status = payload.get('status') or payload.get('current_status')
        webhook_type = status or 'shipment.update'

        webhook = ShippingWebhook.objects.create(
            tenant_id=shipment.tenant_id,
            shipment=shipment,
            order_id=shipment.order_id,
            webhook_type=webhook_type,
            shiprocket_event_id=str(payload.get('shipment_id') or payload.get('order_id') or ''),
            payload=payload,
        )

        try:
            with transaction.atomic():
                self._apply(shipment, payload, status)
                ShippingWebhook.objects.filter(pk=webhook.pk).update(processed=True, processed_at=timezone.now())
        except Exception as e:
            logger.exception(f"Error processing shipping webhook {webhook.id}: {e}")
            schedule_operation_retry(
                shipment.tenant,
                'shipping_webhook',
                webhook.id,
                {"webhook_id": webhook.id, "event": webhook_type},
                str(e),
            )
            return {"status": "retry_scheduled", "webhook_id": webhook.id}

        return {"status": "processed", "webhook_id": webhook.id}

    def _resolve_shipment(self, payload):
        shipment = None
        if payload.get('order_id'):
            shipment = Shipment.objects.filter(shiprocket_order_id=str(payload['order_id'])).select_related('order', 'tenant').first()
        if shipment is None and payload.get('shipment_id'):
            shipment = Shipment.objects.filter(shipment_id=str(payload['shipment_id'])).select_related('order', 'tenant').first()
        return shipment

    def _apply(self, shipment, payload, status):
        now = timezone.now()
        if status:
            shipment.status = status
            shipment.last_tracking_status = status
        shipment.last_tracking_update_at = now
        if payload.get('awb_code'):
            shipment.awb_code = payload['awb_code']
        if payload.get('courier_name'):
            shipment.courier_name = payload['courier_name']
        shipment.save()

        tracks = (payload.get('tracking_data') or {}).get('shipment_track') or []
        if tracks:
            latest = tracks[0]
            timestamp = parse_datetime(latest.get('current_status_time') or '') or now
            if timezone.is_naive(timestamp):
                timestamp = timezone.make_aware(timestamp)
            TrackingUpdate.objects.create(
                tenant_id=shipment.tenant_id,
                shipment=shipment,
                order_id=shipment.order_id,
                status=latest.get('current_status') or status or 'unknown',
                location=latest.get('current_status_location') or '',
                timestamp=timestamp,
                courier_name=payload.get('courier_name') or '',
                awb_code=payload.get('awb_code') or '',
                raw_data=payload,
            )

        order_status = order_status_for(payload.get('status'))
        if order_status:
            Order.objects.filter(pk=shipment.order_id).update(status=order_status, updated_at=now)
            logger.info(f"Order {shipment.order.order_number} moved to {order_status} from shipment status '{payload['status']}'")
        else:
            logger.info(f"Shipment status '{status}' does not change order {shipment.order.order_number}")
