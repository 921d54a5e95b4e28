"""Fire-and-forget notifications for registration lifecycle events.

:func:`dispatch` renders a plain-text template and sends it by email once
the surrounding transaction commits. Delivery problems are logged and never
propagate, so a mail outage cannot roll back a reservation or payment.

Receivers at the bottom of the module map registration signals to
templates; they are connected when the registration app is ready.
"""

import logging
from typing import Any

from django.core.mail import send_mail
from django.db import transaction
from django.dispatch import receiver
from django.template.loader import render_to_string

from tradeconnect.registration.models import Registration
from tradeconnect.registration.signals import registration_status_changed, reservation_expiring
from tradeconnect.settings import get_config

logger = logging.getLogger(__name__)

SUBJECTS = {
    "reservation_created": "Your reservation {registration_code} is waiting for payment",
    "reservation_expiring": "Your reservation {registration_code} is about to expire",
    "reservation_expired": "Your reservation {registration_code} has expired",
    "registration_confirmed": "Registration {registration_code} confirmed",
    "registration_cancelled": "Registration {registration_code} cancelled",
    "registration_refunded": "Registration {registration_code} refunded",
    "payment_failed": "Payment for {registration_code} did not go through",
}

STATUS_TEMPLATES = {
    Registration.Status.PENDIENTE_PAGO: "reservation_created",
    Registration.Status.CONFIRMADO: "registration_confirmed",
    Registration.Status.EXPIRADO: "reservation_expired",
    Registration.Status.CANCELADO: "registration_cancelled",
    Registration.Status.REEMBOLSADO: "registration_refunded",
}


def _send(template_code: str, recipient: str, data: dict[str, Any]) -> None:
    try:
        subject = SUBJECTS[template_code].format(**data)
        body = render_to_string(f"tradeconnect/notifications/{template_code}.txt", data)
        send_mail(subject, body, get_config().notifications.from_email, [recipient])
    except Exception:
        logger.exception("Failed to send '%s' notification to %s", template_code, recipient)
        return
    logger.info("Sent '%s' notification to %s", template_code, recipient)


def dispatch(template_code: str, recipient: str, data: dict[str, Any]) -> None:
    """Schedule a notification for after the current transaction commits.

    Args:
        template_code: Key into :data:`SUBJECTS`, also the template name.
        recipient: Email address.
        data: Template context; must contain ``registration_code``.
    """
    if not get_config().notifications.enabled or not recipient:
        return
    transaction.on_commit(lambda: _send(template_code, recipient, data))


def registration_context(registration: Registration) -> dict[str, Any]:
    config = get_config()
    return {
        "registration_code": registration.registration_code,
        "name": registration.full_name or registration.user.get_username(),
        "event_title": registration.event.title,
        "quantity": registration.quantity,
        "final_price": f"{config.currency_symbol}{registration.final_price}",
        "reservation_expires_at": registration.reservation_expires_at,
        "authorization_number": registration.fel_authorization_number,
    }


def registration_recipient(registration: Registration) -> str:
    return registration.email or registration.user.email


@receiver(registration_status_changed, dispatch_uid="tradeconnect.notifications.status_changed")
def notify_status_change(sender: type, registration: Registration, status: str, **kwargs: object) -> None:  # noqa: ARG001
    template_code = STATUS_TEMPLATES.get(status)
    if template_code is None:
        return
    dispatch(template_code, registration_recipient(registration), registration_context(registration))


@receiver(reservation_expiring, dispatch_uid="tradeconnect.notifications.reservation_expiring")
def notify_expiring(sender: type, registration: Registration, **kwargs: object) -> None:  # noqa: ARG001
    dispatch("reservation_expiring", registration_recipient(registration), registration_context(registration))
