"""Custom signals for the registration app.

Signals:
    registration_status_changed: Sent after a registration moves to a new
        status, once the change is saved.
        Sender: The ``Registration`` class.
        Kwargs:
            registration: The ``Registration`` instance.
            previous_status: The status it left.
            status: The status it entered.
    reservation_expiring: Sent when a held reservation is about to lapse.
        Sender: The ``Registration`` class.
        Kwargs:
            registration: The ``Registration`` instance.
"""

from django.dispatch import Signal

registration_status_changed = Signal()
reservation_expiring = Signal()
