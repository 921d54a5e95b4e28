"""Management command for the periodic reservation sweep.

Expires held reservations whose window has elapsed, flags abandoned carts
and, with ``--remind``, warns holders whose reservation is about to lapse.
Meant to run every minute from cron or a scheduler.

Usage::

    manage.py expire_reservations
    manage.py expire_reservations --remind
    manage.py expire_reservations --dry-run
"""

from typing import TYPE_CHECKING

from django.core.management.base import BaseCommand

from tradeconnect.registration.services.reservation import ReservationService

if TYPE_CHECKING:
    import argparse


class Command(BaseCommand):
    """Expire stale reservations and abandoned carts."""

    help = "Expire stale reservations, flag abandoned carts and optionally send expiry reminders"

    def add_arguments(self, parser: "argparse.ArgumentParser") -> None:
        """Register command-line arguments.

        Args:
            parser: The argument parser to add arguments to.
        """
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would change without writing anything.",
        )
        parser.add_argument(
            "--remind",
            action="store_true",
            help="Also email holders whose reservation expires soon.",
        )

    def handle(self, **options: object) -> None:
        """Run the sweep."""
        dry_run = bool(options["dry_run"])
        prefix = "Would expire" if dry_run else "Expired"

        expired = ReservationService.expire_stale_reservations(dry_run=dry_run)
        self.stdout.write(f"{prefix} {expired} reservation(s)")

        abandoned = ReservationService.mark_abandoned_carts(dry_run=dry_run)
        self.stdout.write(f"{'Would flag' if dry_run else 'Flagged'} {abandoned} abandoned cart(s)")

        if options["remind"]:
            reminded = ReservationService.send_expiry_reminders(dry_run=dry_run)
            self.stdout.write(f"{'Would remind' if dry_run else 'Reminded'} {reminded} holder(s)")

        self.stdout.write(self.style.SUCCESS("Reservation sweep complete"))
