"""
Domain event outbox.

Events are written in the same transaction as the state change they
describe and delivered afterwards by the dispatcher in ``events``.
"""

from __future__ import annotations

import uuid
from typing import Any

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class DomainEvent(models.Model):
    """One outbox row per domain event."""

    class Status(models.TextChoices):
        PENDING = "PENDING", _("Pending")
        DISPATCHED = "DISPATCHED", _("Dispatched")
        FAILED = "FAILED", _("Failed")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_type = models.CharField(max_length=100, db_index=True)
    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="domain_events",
    )
    customer_id = models.UUIDField(null=True, blank=True)
    payload = models.JSONField(default=dict, blank=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    dispatched_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "billing_domain_events"
        verbose_name = _("Domain Event")
        verbose_name_plural = _("Domain Events")
        ordering = ("created_at", "id")
        indexes = (models.Index(fields=["status", "created_at"], name="domain_event_status_created"),)

    def __str__(self) -> str:
        return f"{self.event_type} ({self.status})"

    def mark_dispatched(self) -> None:
        self.status = self.Status.DISPATCHED
        self.dispatched_at = timezone.now()
        self.last_error = ""
        self.save(update_fields=["status", "dispatched_at", "last_error"])

    def mark_failed_attempt(self, error: str, max_attempts: int) -> None:
        """Record a failed delivery; park the event once ``max_attempts`` is reached."""
        self.attempts += 1
        self.last_error = error[:2000]
        if self.attempts >= max_attempts:
            self.status = self.Status.FAILED
        self.save(update_fields=["attempts", "last_error", "status"])

    def as_message(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.event_type,
            "createdAt": self.created_at.isoformat(),
            "data": self.payload,
        }
