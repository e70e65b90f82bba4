"""
Customer models for the billing platform.

Customers are the billed party of a subscription. Identity and contact data
only; payment methods, wallets and tax profiles are owned by external
collaborators.
"""

from __future__ import annotations

import uuid
from typing import Any, ClassVar

from django.db import models
from django.utils.translation import gettext_lazy as _


class Customer(models.Model):
    """
    Core customer model - only essential identifying information.

    🚨 PROTECT Behavior:
    - Subscription, Invoice and CreditNote reference customers with PROTECT or RESTRICT,
      billing history is never removed together with a customer.
    """

    CUSTOMER_TYPE_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("individual", _("Individual")),
        ("company", _("Company")),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Core Identity Fields
    name = models.CharField(max_length=255)
    customer_type = models.CharField(
        max_length=20,
        choices=CUSTOMER_TYPE_CHOICES,
        default="individual",
    )
    company_name = models.CharField(max_length=255, blank=True)
    email = models.EmailField(blank=True)

    # Tenant-side identifier (e.g. the customer's id in the tenant's own system)
    external_id = models.CharField(max_length=255, blank=True, db_index=True)

    metadata = models.JSONField(default=dict, blank=True)

    # Audit Fields
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "customers"
        verbose_name = _("Customer")
        verbose_name_plural = _("Customers")
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["email"], name="customers_email_idx"),
            models.Index(fields=["created_at"], name="customers_created_idx"),
        )

    def __str__(self) -> str:
        return self.get_display_name()

    def get_display_name(self) -> str:
        """Get customer display name"""
        if self.customer_type == "company" and self.company_name:
            return self.company_name
        return self.name or self.email
