"""Django app configuration for the promotions app."""

from django.apps import AppConfig


class TradeConnectPromotionsConfig(AppConfig):
    """Configuration for the promotions app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "tradeconnect.promotions"
    label = "tradeconnect_promotions"
    verbose_name = "Promotions"
