"""Django admin configuration for the events app."""

from django.contrib import admin

from tradeconnect.events.models import Event, EventCategory
from tradeconnect.promotions.admin import EarlyBirdDiscountInline, VolumeDiscountInline


@admin.register(EventCategory)
class EventCategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "is_active")
    search_fields = ("name", "slug")
    prepopulated_fields = {"slug": ("name",)}


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    """Admin interface for events.

    Volume and early-bird tiers are edited inline so the whole automatic
    pricing of an event lives on one page.
    """

    list_display = ("title", "category", "start_date", "base_price", "min_price", "capacity", "status", "is_active")
    list_filter = ("status", "is_active", "category")
    search_fields = ("title", "slug")
    prepopulated_fields = {"slug": ("title",)}
    date_hierarchy = "start_date"
    inlines = [VolumeDiscountInline, EarlyBirdDiscountInline]
