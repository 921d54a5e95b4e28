"""Event and EventCategory models for TradeConnect."""

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from tradeconnect.pricing.money import Money
from tradeconnect.pricing.rules import EventPricing


class EventCategory(models.Model):
    """A grouping of events (e.g. Training, Certification, Business Forum).

    Category-specific promotions are scoped through this model.
    """

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "event categories"

    def __str__(self) -> str:
        return self.name


class Event(models.Model):
    """A sellable event with its pricing floor and venue capacity.

    ``min_price`` is the per-unit floor no combination of discounts may go
    below. Price changes only affect carts and registrations priced after
    the change; existing rows keep their snapshot.
    """

    class Status(models.TextChoices):
        """Publication states for an event."""

        DRAFT = "draft", "Draft"
        PUBLISHED = "published", "Published"
        CANCELLED = "cancelled", "Cancelled"

    title = models.CharField(max_length=300)
    slug = models.SlugField(max_length=300, unique=True)
    description = models.TextField(blank=True, default="")
    category = models.ForeignKey(
        EventCategory,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="events",
    )
    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    min_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Per-unit floor price discounts may never go below.",
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(null=True, blank=True)
    capacity = models.PositiveIntegerField(
        default=0,
        help_text="Maximum number of attendees. 0 means unlimited.",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PUBLISHED,
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["start_date"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(min_price__lte=models.F("base_price")),
                name="events_event_min_price_not_above_base",
            ),
        ]

    def __str__(self) -> str:
        return self.title

    def clean(self) -> None:
        """Reject a floor price above the base price."""
        super().clean()
        if self.min_price is not None and self.base_price is not None and self.min_price > self.base_price:
            raise ValidationError({"min_price": "Minimum price cannot exceed the base price."})

    @property
    def is_purchasable(self) -> bool:
        return self.is_active and self.status == self.Status.PUBLISHED

    def to_pricing(self) -> EventPricing:
        """Return the pricing snapshot the evaluators work with."""
        return EventPricing(
            id=self.pk,
            base_price=Money.parse(self.base_price),
            min_price=Money.parse(self.min_price),
            start_date=self.start_date,
            category_id=self.category_id,
        )
