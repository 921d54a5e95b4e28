"""Django app configuration for the events app."""

from django.apps import AppConfig


class TradeConnectEventsConfig(AppConfig):
    """Configuration for the events app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "tradeconnect.events"
    label = "tradeconnect_events"
    verbose_name = "Events"
