"""Django app configuration for the registration app."""

from django.apps import AppConfig


class TradeConnectRegistrationConfig(AppConfig):
    """Configuration for the registration app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "tradeconnect.registration"
    label = "tradeconnect_registration"
    verbose_name = "Registration"

    def ready(self) -> None:
        """Connect notification handlers."""
        import tradeconnect.notifications  # noqa: F401, PLC0415
