"""
Invoice and credit note models.

Invoices are produced by the external invoicing pipeline; the billing core
only needs to find a subscription's latest one. Credit notes are issued by
the subscription lifecycle when unused time is refunded.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any, ClassVar

from django.core.validators import MinValueValidator
from django.db import models, transaction
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

from apps.common.validators import log_security_event, normalize_currency_code

from .validators import validate_financial_amount, validate_financial_json

logger = logging.getLogger(__name__)


# ===============================================================================
# DOCUMENT SEQUENCING
# ===============================================================================


class DocumentSequence(models.Model):
    """Gapless numbering for invoices and credit notes"""

    scope = models.CharField(max_length=50, default="default", unique=True)
    last_value = models.BigIntegerField(default=0)

    class Meta:
        db_table = "billing_document_sequences"
        verbose_name = _("Document Sequence")
        verbose_name_plural = _("Document Sequences")

    def __str__(self) -> str:
        return f"{self.scope}: {self.last_value}"

    @classmethod
    def next_number(cls, scope: str, prefix: str) -> str:
        sequence, _created = cls.objects.get_or_create(scope=scope)
        return sequence.get_next_number(prefix)

    def get_next_number(self, prefix: str) -> str:
        """Get next number and increment the sequence atomically"""
        with transaction.atomic():
            old_value = self.last_value

            # Atomic increment using F() expression to prevent race conditions
            DocumentSequence.objects.filter(pk=self.pk).update(last_value=F("last_value") + 1)
            self.refresh_from_db()
            new_number = f"{prefix}-{self.last_value:06d}"

            log_security_event(
                event_type="document_number_generated",
                details={
                    "sequence_scope": self.scope,
                    "old_value": old_value,
                    "new_value": self.last_value,
                    "generated_number": new_number,
                    "critical_financial_operation": True,
                },
            )

            return new_number


# ===============================================================================
# INVOICE
# ===============================================================================


class InvoiceQuerySet(models.QuerySet):
    def for_subscription(self, subscription: Any) -> InvoiceQuerySet:
        return self.filter(subscription=subscription)

    def latest_for_subscription(self, subscription: Any) -> Invoice | None:
        """Most recently issued (or created) invoice of ``subscription``, if any."""
        return (
            self.for_subscription(subscription)
            .exclude(status=Invoice.Status.VOID)
            .order_by(F("issued_at").desc(nulls_last=True), "-created_at")
            .first()
        )


class Invoice(models.Model):
    """Minimal invoice record owned by the invoicing pipeline."""

    class Status(models.TextChoices):
        DRAFT = "DRAFT", _("Draft")
        FINALIZED = "FINALIZED", _("Finalized")
        PAID = "PAID", _("Paid")
        VOID = "VOID", _("Void")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    number = models.CharField(max_length=50, unique=True, blank=True)
    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="invoices",
    )
    customer = models.ForeignKey(
        "customers.Customer",
        on_delete=models.RESTRICT,  # Cannot delete customer with invoices
        related_name="invoices",
    )
    amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))
    currency = models.CharField(max_length=3)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    issued_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = InvoiceQuerySet.as_manager()

    class Meta:
        db_table = "billing_invoices"
        verbose_name = _("Invoice")
        verbose_name_plural = _("Invoices")
        ordering = ("-created_at",)
        indexes = (models.Index(fields=["subscription", "issued_at"], name="invoice_subscription_issued"),)

    def __str__(self) -> str:
        return f"{self.number} ({self.amount} {self.currency})"

    def save(self, *args: Any, **kwargs: Any) -> None:
        self.currency = normalize_currency_code(self.currency)
        if not self.number:
            self.number = DocumentSequence.next_number("invoice", "INV")
        super().save(*args, **kwargs)


# ===============================================================================
# CREDIT NOTE
# ===============================================================================


class CreditNote(models.Model):
    """Credit issued against an invoice, e.g. for the unused part of a period."""

    class Reason(models.TextChoices):
        ORDER_CHANGE = "ORDER_CHANGE", _("Order change")
        DUPLICATE = "DUPLICATE", _("Duplicate")
        PRODUCT_UNSATISFACTORY = "PRODUCT_UNSATISFACTORY", _("Product unsatisfactory")
        OTHER = "OTHER", _("Other")

    class Status(models.TextChoices):
        DRAFT = "DRAFT", _("Draft")
        FINALIZED = "FINALIZED", _("Finalized")
        VOIDED = "VOIDED", _("Voided")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    number = models.CharField(max_length=50, unique=True, blank=True)
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="credit_notes")
    customer = models.ForeignKey(
        "customers.Customer",
        on_delete=models.RESTRICT,
        related_name="credit_notes",
    )
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    currency = models.CharField(max_length=3)
    reason = models.CharField(max_length=30, choices=Reason.choices, default=Reason.ORDER_CHANGE)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    metadata = models.JSONField(default=dict, blank=True)

    issued_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_credit_notes"
        verbose_name = _("Credit Note")
        verbose_name_plural = _("Credit Notes")
        ordering = ("-created_at",)
        constraints: ClassVar[list] = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="credit_note_amount_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.number} ({self.amount} {self.currency})"

    def clean(self) -> None:
        super().clean()
        validate_financial_amount(self.amount, "amount")
        validate_financial_json(self.metadata, "metadata")

    def save(self, *args: Any, **kwargs: Any) -> None:
        self.currency = normalize_currency_code(self.currency)
        if not self.number:
            self.number = DocumentSequence.next_number("credit_note", "CN")
        self.clean()
        super().save(*args, **kwargs)

        log_security_event(
            event_type="credit_note_saved",
            details={
                "credit_note_id": str(self.id),
                "invoice_id": str(self.invoice_id),
                "amount": str(self.amount),
                "currency": self.currency,
                "status": self.status,
                "critical_financial_operation": True,
            },
        )
