"""Discount, promotion and promo code models for TradeConnect."""

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

_PERCENTAGE_VALIDATORS = [MinValueValidator(0), MaxValueValidator(100)]


class VolumeDiscount(models.Model):
    """A quantity band with a percentage discount for one event.

    Several tiers may exist per event. The tier whose range contains the
    cart-wide quantity for the event applies; overlapping tiers are resolved
    by priority, then percentage.
    """

    event = models.ForeignKey(
        "tradeconnect_events.Event",
        on_delete=models.CASCADE,
        related_name="volume_discounts",
    )
    min_quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    max_quantity = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Upper bound of the band. Empty means unbounded.",
    )
    discount_percentage = models.DecimalField(max_digits=5, decimal_places=2, validators=_PERCENTAGE_VALIDATORS)
    priority = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["event", "min_quantity"]

    def __str__(self) -> str:
        upper = self.max_quantity if self.max_quantity is not None else "+"
        return f"{self.discount_percentage}% for {self.min_quantity}-{upper} ({self.event})"

    def clean(self) -> None:
        super().clean()
        if self.max_quantity is not None and self.min_quantity is not None and self.max_quantity < self.min_quantity:
            raise ValidationError({"max_quantity": "Maximum quantity cannot be lower than the minimum quantity."})


class EarlyBirdDiscount(models.Model):
    """A percentage discount for purchases made ahead of the event start."""

    event = models.ForeignKey(
        "tradeconnect_events.Event",
        on_delete=models.CASCADE,
        related_name="early_bird_discounts",
    )
    days_before_event = models.PositiveIntegerField(validators=[MinValueValidator(1), MaxValueValidator(365)])
    discount_percentage = models.DecimalField(max_digits=5, decimal_places=2, validators=_PERCENTAGE_VALIDATORS)
    priority = models.IntegerField(default=0)
    auto_apply = models.BooleanField(default=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["event", "-days_before_event"]

    def __str__(self) -> str:
        return f"{self.discount_percentage}% {self.days_before_event} days before ({self.event})"


class Promotion(models.Model):
    """A named eligibility and stacking policy shared by its promo codes.

    Scoping fields are only consulted for the matching ``type``: ``events``
    for EVENT_SPECIFIC, ``categories`` for CATEGORY_SPECIFIC and
    ``user_types`` (group names) for MEMBERSHIP.
    """

    class Type(models.TextChoices):
        """Scope of a promotion."""

        GENERAL = "GENERAL", "General"
        EVENT_SPECIFIC = "EVENT_SPECIFIC", "Event specific"
        CATEGORY_SPECIFIC = "CATEGORY_SPECIFIC", "Category specific"
        MEMBERSHIP = "MEMBERSHIP", "Membership"

    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    type = models.CharField(max_length=20, choices=Type.choices, default=Type.GENERAL)
    events = models.ManyToManyField(
        "tradeconnect_events.Event",
        blank=True,
        related_name="promotions",
    )
    categories = models.ManyToManyField(
        "tradeconnect_events.EventCategory",
        blank=True,
        related_name="promotions",
    )
    user_types = models.JSONField(
        default=list,
        blank=True,
        help_text="Group names eligible for a MEMBERSHIP promotion.",
    )
    min_purchase_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    is_stackable = models.BooleanField(default=True)
    priority = models.IntegerField(default=0)
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-priority", "name"]

    def __str__(self) -> str:
        return self.name

    def clean(self) -> None:
        super().clean()
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValidationError({"end_date": "End date cannot be before the start date."})
        if not isinstance(self.user_types, list) or not all(isinstance(value, str) for value in self.user_types):
            raise ValidationError({"user_types": "User types must be a list of group names."})


class PromoCode(models.Model):
    """A code a shopper types in to get a discount.

    Codes are stored upper-case and looked up case-insensitively.
    ``current_uses_total`` is only ever changed by the usage ledger's
    conditional updates.
    """

    class DiscountType(models.TextChoices):
        """How ``discount_value`` is interpreted."""

        PERCENTAGE = "PERCENTAGE", "Percentage"
        FIXED_AMOUNT = "FIXED_AMOUNT", "Fixed amount"
        BUY_X_GET_Y = "BUY_X_GET_Y", "Buy X get Y"
        SPECIAL_PRICE = "SPECIAL_PRICE", "Special price"

    code = models.CharField(max_length=50, unique=True)
    description = models.TextField(blank=True, default="")
    discount_type = models.CharField(max_length=20, choices=DiscountType.choices, default=DiscountType.PERCENTAGE)
    discount_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Percentage (0-100), fixed amount, or resulting special price depending on discount_type.",
    )
    buy_quantity = models.PositiveIntegerField(null=True, blank=True, help_text="X in BUY_X_GET_Y.")
    free_quantity = models.PositiveIntegerField(null=True, blank=True, help_text="Y in BUY_X_GET_Y.")
    max_uses_total = models.PositiveIntegerField(null=True, blank=True, help_text="Empty means unlimited.")
    max_uses_per_user = models.PositiveIntegerField(default=1)
    current_uses_total = models.PositiveIntegerField(default=0)
    min_purchase_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    max_discount_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Cap for percentage discounts.",
    )
    is_stackable = models.BooleanField(default=True)
    promotion = models.ForeignKey(
        Promotion,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="promo_codes",
    )
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(max_uses_total__isnull=True)
                | models.Q(current_uses_total__lte=models.F("max_uses_total")),
                name="promotions_promocode_uses_within_limit",
            ),
        ]

    def __str__(self) -> str:
        return self.code

    def save(self, *args: object, **kwargs: object) -> None:
        """Normalize the code to upper case before saving."""
        self.code = self.code.strip().upper()
        super().save(*args, **kwargs)

    def clean(self) -> None:
        super().clean()
        errors = {}
        if self.discount_type == self.DiscountType.PERCENTAGE and self.discount_value > 100:
            errors["discount_value"] = "A percentage discount cannot exceed 100."
        if self.discount_type == self.DiscountType.BUY_X_GET_Y and not (self.buy_quantity and self.free_quantity):
            errors["buy_quantity"] = "Buy X get Y codes need both a buy and a free quantity."
        if self.start_date and self.end_date and self.end_date < self.start_date:
            errors["end_date"] = "End date cannot be before the start date."
        if errors:
            raise ValidationError(errors)

    @property
    def remaining_uses(self) -> int | None:
        """Return the uses left before the cap, or ``None`` when unlimited."""
        if self.max_uses_total is None:
            return None
        return max(self.max_uses_total - self.current_uses_total, 0)


class PromoCodeUserUsage(models.Model):
    """Per-user claim counter checked by the ledger's conditional update."""

    promo_code = models.ForeignKey(PromoCode, on_delete=models.CASCADE, related_name="user_usages")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="promo_code_usages",
    )
    uses = models.PositiveIntegerField(default=0)

    class Meta:
        unique_together = [("promo_code", "user")]

    def __str__(self) -> str:
        return f"{self.promo_code} x{self.uses} ({self.user})"


class PromoCodeUsage(models.Model):
    """Audit row for one claim of a promo code.

    A claim moves from APPLIED to RELEASED at most once; the ledger uses that
    transition to make releases idempotent.
    """

    class Status(models.TextChoices):
        """Lifecycle of a claim."""

        APPLIED = "APPLIED", "Applied"
        RELEASED = "RELEASED", "Released"

    promo_code = models.ForeignKey(PromoCode, on_delete=models.CASCADE, related_name="usages")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    cart = models.ForeignKey(
        "tradeconnect_registration.Cart",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="promo_code_usages",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.APPLIED)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    original_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    released_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.promo_code} ({self.status})"
