"""Django admin configuration for the registration app."""

from typing import TYPE_CHECKING

from django.contrib import admin, messages
from django.core.exceptions import ValidationError

from tradeconnect.registration.models import Cart, CartItem, Payment, Refund, Registration
from tradeconnect.registration.services.reservation import ReservationService

if TYPE_CHECKING:
    from django.db.models import QuerySet
    from django.http import HttpRequest


class CartItemInline(admin.TabularInline):
    """Inline display of cart items within the cart admin.

    Prices are written by the cart service on every change, so they are
    read-only here.
    """

    model = CartItem
    extra = 0
    readonly_fields = ("event", "participant_type", "quantity", "base_price", "discount_amount", "final_price")


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    """Read-oriented view of shopping carts with their items inline."""

    list_display = ("session_id", "user", "status", "total_items", "total", "promo_code", "is_abandoned", "expires_at")
    list_filter = ("status", "is_abandoned")
    search_fields = ("session_id", "user__email")
    readonly_fields = ("total_items", "subtotal", "discount_amount", "total", "promo_discount")
    inlines = (CartItemInline,)


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ("transaction_id", "gateway", "status", "amount", "fee", "net_amount", "retry_count")


@admin.register(Registration)
class RegistrationAdmin(admin.ModelAdmin):
    """Admin interface for registrations.

    Status is read-only: it only changes through the reservation service,
    which the "cancel" action below goes through as well.
    """

    list_display = (
        "registration_code",
        "event",
        "user",
        "status",
        "quantity",
        "final_price",
        "reservation_expires_at",
    )
    list_filter = ("status", "participant_type", "event")
    search_fields = ("registration_code", "email", "nit", "company_name", "user__email")
    readonly_fields = (
        "status",
        "base_price",
        "discount_amount",
        "final_price",
        "applied_discounts",
        "reservation_expires_at",
        "group_registration_id",
        "promo_code_usage",
        "fel_authorization_number",
    )
    inlines = (PaymentInline,)
    actions = ("cancel_registrations",)

    @admin.action(description="Cancel selected registrations")
    def cancel_registrations(self, request: "HttpRequest", queryset: "QuerySet[Registration]") -> None:
        cancelled = 0
        for registration in queryset:
            try:
                ReservationService.cancel(registration)
            except ValidationError as exc:
                self.message_user(request, f"{registration.registration_code}: {exc.messages[0]}", messages.WARNING)
                continue
            cancelled += 1
        self.message_user(request, f"Cancelled {cancelled} registration(s).")


class RefundInline(admin.TabularInline):
    model = Refund
    extra = 0
    can_delete = False
    readonly_fields = ("amount", "reason", "gateway_refund_id", "status", "created_at")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """Admin interface for gateway payments, with refunds inline."""

    list_display = ("transaction_id", "registration", "gateway", "status", "amount", "fee", "net_amount", "created_at")
    list_filter = ("gateway", "status")
    search_fields = ("transaction_id", "gateway_transaction_id", "registration__registration_code")
    readonly_fields = ("net_amount", "retry_count", "last_retry_at", "confirmed_at")
    inlines = (RefundInline,)


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    """Read-only admin for refunds; refunds are issued through the refund service."""

    list_display = ("payment", "amount", "status", "created_at")
    list_filter = ("status",)
    readonly_fields = ("payment", "amount", "reason", "gateway_refund_id", "status", "created_at")

    def has_add_permission(self, request: "HttpRequest") -> bool:  # noqa: ARG002, D102
        return False

    def has_change_permission(self, request: "HttpRequest", obj: Refund | None = None) -> bool:  # noqa: ARG002, D102
        return False
