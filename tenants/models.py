import uuid
from django.db import models
from django.utils import timezone


class Tenant(models.Model):
    class Plan(models.TextChoices):
        TRIAL = 'trial', 'Trial'
        PRO = 'pro', 'Pro'

    class BusinessType(models.TextChoices):
        ECOMMERCE = 'ecommerce', 'E-commerce'
        GROCERY = 'grocery', 'Grocery'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store_name = models.CharField(max_length=255)
    store_slug = models.SlugField(max_length=100, unique=True)
    plan = models.CharField(max_length=10, choices=Plan.choices, default=Plan.TRIAL)
    trial_ends_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    business_type = models.CharField(max_length=20, choices=BusinessType.choices, default=BusinessType.ECOMMERCE)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.store_name} ({self.store_slug})"

    @property
    def has_active_subscription(self):
        """A store serves shoppers while on the pro plan or inside its trial window."""
        if self.plan == self.Plan.PRO:
            return True
        return self.trial_ends_at is not None and timezone.now() < self.trial_ends_at

    class Meta:
        ordering = ['store_name']


class TenantIntegration(models.Model):
    # Per-store gateway credentials; secrets never leave the backend.
    tenant = models.OneToOneField(Tenant, on_delete=models.CASCADE, related_name='integration')
    razorpay_key_id = models.CharField(max_length=255, blank=True)
    razorpay_key_secret = models.CharField(max_length=255, blank=True)

    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Integrations for {self.tenant.store_slug}"

    @property
    def razorpay_configured(self):
        return bool(self.razorpay_key_id and self.razorpay_key_secret)
