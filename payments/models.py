import uuid
from django.db import models

from tenants.models import Tenant
from orders.models import Order


class PaymentIntent(models.Model):
    class Status(models.TextChoices):
        INITIATED = 'initiated', 'Initiated'
        RAZORPAY_ORDER_CREATED = 'razorpay_order_created', 'Razorpay order created'
        PAID = 'paid', 'Paid'
        FAILED = 'failed', 'Failed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='payment_intents')
    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='payment_intent')
    reference = models.CharField(max_length=40, unique=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='INR')

    razorpay_order_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    razorpay_payment_id = models.CharField(max_length=255, null=True, blank=True, db_index=True)
    status = models.CharField(max_length=30, choices=Status.choices, default=Status.INITIATED, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"PaymentIntent {self.reference} for order {self.order.order_number} - {self.get_status_display()}"


class PaymentWebhook(models.Model):
    # Every signature-verified delivery is recorded before it is applied.
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='payment_webhooks')
    payment_intent = models.ForeignKey(PaymentIntent, on_delete=models.SET_NULL, null=True, blank=True, related_name='webhooks')
    order = models.ForeignKey(Order, on_delete=models.SET_NULL, null=True, blank=True, related_name='payment_webhooks')
    event_id = models.CharField(max_length=255, null=True, blank=True, unique=True)
    webhook_type = models.CharField(max_length=100)
    razorpay_payment_id = models.CharField(max_length=255, null=True, blank=True)
    razorpay_order_id = models.CharField(max_length=255, null=True, blank=True)
    payload = models.JSONField(default=dict)
    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.webhook_type} ({'processed' if self.processed else 'pending'})"

    class Meta:
        ordering = ['-created_at']


class PaymentReconciliation(models.Model):
    class Status(models.TextChoices):
        MATCHED = 'matched', 'Matched'
        MISMATCH = 'mismatch', 'Mismatch'

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='payment_reconciliations')
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='reconciliations')
    payment_intent = models.ForeignKey(PaymentIntent, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    # One row per captured remote payment, however many times the capture is reported.
    razorpay_payment_id = models.CharField(max_length=255, unique=True)
    razorpay_order_id = models.CharField(max_length=255, null=True, blank=True)
    expected_amount = models.DecimalField(max_digits=12, decimal_places=2)
    received_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=Status.choices)

    created_at = models.DateTimeField(auto_now_add=True)


class Refund(models.Model):
    class Status(models.TextChoices):
        INITIATED = 'initiated', 'Initiated'
        PROCESSED = 'processed', 'Processed'
        FAILED = 'failed', 'Failed'

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='refunds')
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='refunds')
    razorpay_refund_id = models.CharField(max_length=255, unique=True)
    razorpay_payment_id = models.CharField(max_length=255, null=True, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.INITIATED)
    processed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Refund {self.razorpay_refund_id} of {self.amount} - {self.get_status_display()}"


class OperationRetry(models.Model):
    """
    A request to reprocess a failed operation out of band. The worker that
    drains this table lives outside this service.
    """
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        SUCCEEDED = 'succeeded', 'Succeeded'
        EXHAUSTED = 'exhausted', 'Exhausted'

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='operation_retries')
    operation_type = models.CharField(max_length=50)
    operation_id = models.CharField(max_length=255)
    payload = models.JSONField(default=dict)
    error_message = models.TextField(blank=True)
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=5)
    next_attempt_at = models.DateTimeField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['next_attempt_at']
        constraints = [
            models.UniqueConstraint(fields=['operation_type', 'operation_id'], name='uq_retry_operation'),
        ]
