"""Django admin configuration for the promotions app."""

from typing import TYPE_CHECKING

from django.contrib import admin

from tradeconnect.promotions.models import (
    EarlyBirdDiscount,
    PromoCode,
    PromoCodeUsage,
    Promotion,
    VolumeDiscount,
)

if TYPE_CHECKING:
    from django.http import HttpRequest


class VolumeDiscountInline(admin.TabularInline):
    """Inline editor for an event's volume tiers."""

    model = VolumeDiscount
    extra = 0
    fields = ("min_quantity", "max_quantity", "discount_percentage", "priority", "is_active")


class EarlyBirdDiscountInline(admin.TabularInline):
    """Inline editor for an event's early-bird tiers."""

    model = EarlyBirdDiscount
    extra = 0
    fields = ("days_before_event", "discount_percentage", "priority", "auto_apply", "is_active")


class PromoCodeInline(admin.TabularInline):
    model = PromoCode
    extra = 0
    fields = ("code", "discount_type", "discount_value", "current_uses_total", "max_uses_total", "is_active")
    readonly_fields = ("current_uses_total",)


@admin.register(Promotion)
class PromotionAdmin(admin.ModelAdmin):
    """Admin interface for promotions.

    Scoping relations use ``filter_horizontal``; attached promo codes are
    editable inline.
    """

    list_display = ("name", "type", "priority", "is_stackable", "start_date", "end_date", "is_active")
    list_filter = ("type", "is_stackable", "is_active")
    search_fields = ("name",)
    filter_horizontal = ("events", "categories")
    inlines = (PromoCodeInline,)


class PromoCodeUsageInline(admin.TabularInline):
    """Read-only claim history of a promo code."""

    model = PromoCodeUsage
    extra = 0
    can_delete = False
    readonly_fields = ("user", "cart", "status", "discount_amount", "original_amount", "created_at", "released_at")

    def has_add_permission(self, request: "HttpRequest", obj: PromoCode | None = None) -> bool:  # noqa: ARG002, D102
        return False


@admin.register(PromoCode)
class PromoCodeAdmin(admin.ModelAdmin):
    """Admin interface for promo codes.

    Shows usage against the cap at a glance. The usage counter is read-only;
    it only moves through the usage ledger.
    """

    list_display = (
        "code",
        "discount_type",
        "discount_value",
        "current_uses_total",
        "max_uses_total",
        "remaining_uses",
        "promotion",
        "is_active",
    )
    list_filter = ("discount_type", "is_active", "is_stackable", "promotion")
    search_fields = ("code",)
    readonly_fields = ("current_uses_total",)
    inlines = (PromoCodeUsageInline,)

    @admin.display(description="Remaining")
    def remaining_uses(self, obj: PromoCode) -> str:
        remaining = obj.remaining_uses
        return "Unlimited" if remaining is None else str(remaining)
