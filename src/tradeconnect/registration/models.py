"""Cart, registration and payment models for TradeConnect."""

from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator, RegexValidator
from django.db import models
from encrypted_fields import EncryptedCharField

NIT_VALIDATOR = RegexValidator(r"^\d{8}-\d$", "NIT must look like 12345678-9.")
CUI_VALIDATOR = RegexValidator(r"^\d{13}$", "CUI must have exactly 13 digits.")


class ParticipantType(models.TextChoices):
    """Who a cart line or registration is for."""

    INDIVIDUAL = "individual", "Individual"
    EMPRESA = "empresa", "Company"


class Cart(models.Model):
    """A session's shopping cart.

    Totals are derived from the items and written only by
    :class:`~tradeconnect.registration.services.cart.CartService`. A cart
    lives for a fixed window from creation (``expires_at``); inactivity marks
    it abandoned before that.
    """

    class Status(models.TextChoices):
        """Lifecycle states for a shopping cart."""

        OPEN = "open", "Open"
        CHECKED_OUT = "checked_out", "Checked Out"
        EXPIRED = "expired", "Expired"

    session_id = models.CharField(max_length=100, unique=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="tradeconnect_carts",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.OPEN)
    total_items = models.PositiveIntegerField(default=0)
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    promo_code = models.ForeignKey(
        "tradeconnect_promotions.PromoCode",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="carts",
    )
    promo_discount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    expires_at = models.DateTimeField()
    last_activity = models.DateTimeField()
    is_abandoned = models.BooleanField(default=False)
    abandoned_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["status", "last_activity"])]

    def __str__(self) -> str:
        return f"Cart {self.session_id} ({self.status})"


class CartItem(models.Model):
    """One event line in a cart.

    ``base_price`` is the unit price snapshotted when the line was added.
    ``discount_amount`` and ``final_price`` cover the whole line.
    """

    cart = models.ForeignKey(Cart, on_delete=models.CASCADE, related_name="items")
    event = models.ForeignKey(
        "tradeconnect_events.Event",
        on_delete=models.PROTECT,
        related_name="cart_items",
    )
    participant_type = models.CharField(
        max_length=20,
        choices=ParticipantType.choices,
        default=ParticipantType.INDIVIDUAL,
    )
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1), MaxValueValidator(50)])
    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    final_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    applied_discounts = models.JSONField(
        default=list,
        blank=True,
        help_text="Rule ids that contributed to the discount, highest priority first.",
    )
    participant_data = models.JSONField(null=True, blank=True)
    group_data = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(discount_amount__gte=0) & models.Q(final_price__gte=0),
                name="registration_cartitem_non_negative_amounts",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.quantity}x {self.event}"

    @property
    def line_subtotal(self) -> Decimal:
        """Return the undiscounted line price (``base_price * quantity``)."""
        return self.base_price * self.quantity


class Registration(models.Model):
    """A reservation of seats at an event for one participant or company.

    Status changes go through
    :class:`~tradeconnect.registration.services.reservation.ReservationService`,
    which enforces :attr:`TRANSITIONS`.
    """

    class Status(models.TextChoices):
        """Registration lifecycle states."""

        BORRADOR = "BORRADOR", "Draft"
        PENDIENTE_PAGO = "PENDIENTE_PAGO", "Pending payment"
        PAGADO = "PAGADO", "Paid"
        CONFIRMADO = "CONFIRMADO", "Confirmed"
        CANCELADO = "CANCELADO", "Cancelled"
        EXPIRADO = "EXPIRADO", "Expired"
        REEMBOLSADO = "REEMBOLSADO", "Refunded"

    TRANSITIONS = {
        Status.BORRADOR: frozenset({Status.PENDIENTE_PAGO, Status.EXPIRADO}),
        Status.PENDIENTE_PAGO: frozenset({Status.PAGADO, Status.EXPIRADO, Status.CANCELADO}),
        Status.PAGADO: frozenset({Status.CONFIRMADO, Status.CANCELADO, Status.REEMBOLSADO}),
        Status.CONFIRMADO: frozenset({Status.REEMBOLSADO}),
        Status.CANCELADO: frozenset(),
        Status.EXPIRADO: frozenset(),
        Status.REEMBOLSADO: frozenset(),
    }
    HOLDING_STATUSES = (Status.BORRADOR, Status.PENDIENTE_PAGO)

    registration_code = models.CharField(max_length=30, unique=True)
    event = models.ForeignKey(
        "tradeconnect_events.Event",
        on_delete=models.PROTECT,
        related_name="registrations",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="tradeconnect_registrations",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.BORRADOR)
    participant_type = models.CharField(
        max_length=20,
        choices=ParticipantType.choices,
        default=ParticipantType.INDIVIDUAL,
    )
    first_name = models.CharField(max_length=100, blank=True, default="")
    last_name = models.CharField(max_length=100, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    company_name = models.CharField(max_length=200, blank=True, default="")
    nit = models.CharField(max_length=12, blank=True, default="", validators=[NIT_VALIDATOR])
    cui = EncryptedCharField(max_length=13, blank=True, null=True, default=None, validators=[CUI_VALIDATOR])
    quantity = models.PositiveIntegerField(default=1)
    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    final_price = models.DecimalField(max_digits=10, decimal_places=2)
    applied_discounts = models.JSONField(default=list, blank=True)
    reservation_expires_at = models.DateTimeField(null=True, blank=True)
    group_registration_id = models.UUIDField(null=True, blank=True, db_index=True)
    promo_code_usage = models.ForeignKey(
        "tradeconnect_promotions.PromoCodeUsage",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="registrations",
    )
    expiry_reminder_sent_at = models.DateTimeField(null=True, blank=True)
    fel_authorization_number = models.CharField(max_length=100, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["status", "reservation_expires_at"])]

    def __str__(self) -> str:
        return f"{self.registration_code} ({self.status})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def holds_reservation(self) -> bool:
        """True while the registration still waits for payment."""
        return self.status in self.HOLDING_STATUSES

    def can_transition_to(self, target: str) -> bool:
        return target in self.TRANSITIONS.get(self.status, frozenset())


class Payment(models.Model):
    """A gateway charge for a registration.

    ``net_amount`` is always ``amount - fee``. Retries of the same charge
    bump ``retry_count`` on the same row.
    """

    class Gateway(models.TextChoices):
        """Supported payment gateways."""

        STRIPE = "stripe", "Stripe"
        PAYPAL = "paypal", "PayPal"
        NEONET = "neonet", "NeoNet"
        BAM = "bam", "BAM"
        MANUAL = "manual", "Manual"

    class Status(models.TextChoices):
        """Payment lifecycle states."""

        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"
        REFUNDED = "refunded", "Refunded"
        PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
        DISPUTED = "disputed", "Disputed"
        EXPIRED = "expired", "Expired"

    transaction_id = models.CharField(max_length=100, unique=True)
    registration = models.ForeignKey(Registration, on_delete=models.CASCADE, related_name="payments")
    gateway = models.CharField(max_length=20, choices=Gateway.choices, default=Gateway.STRIPE)
    gateway_transaction_id = models.CharField(max_length=200, blank=True, default="")
    status = models.CharField(max_length=25, choices=Status.choices, default=Status.PENDING)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    net_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="GTQ")
    retry_count = models.PositiveIntegerField(default=0)
    last_retry_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.gateway} {self.amount} for {self.registration.registration_code}"

    def save(self, *args: object, **kwargs: object) -> None:
        """Keep ``net_amount`` in sync with ``amount`` and ``fee``."""
        self.net_amount = Decimal(self.amount) - Decimal(self.fee)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and ("amount" in update_fields or "fee" in update_fields):
            kwargs["update_fields"] = {*update_fields, "net_amount"}
        super().save(*args, **kwargs)

    @property
    def refunded_amount(self) -> Decimal:
        return self.refunds.filter(status=Refund.Status.COMPLETED).aggregate(total=models.Sum("amount"))[
            "total"
        ] or Decimal("0.00")

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount


class Refund(models.Model):
    """A refund issued against a payment."""

    class Status(models.TextChoices):
        """Refund lifecycle states."""

        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    payment = models.ForeignKey(Payment, on_delete=models.CASCADE, related_name="refunds")
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    reason = models.TextField(blank=True, default="")
    gateway_refund_id = models.CharField(max_length=200, blank=True, default="")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Refund {self.amount} on {self.payment.transaction_id} ({self.status})"
