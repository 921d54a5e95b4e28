"""Management command to bulk-generate promo codes.

Usage::

    # 50 single-use codes worth 15% off, attached to a promotion
    manage.py generate_promo_codes --prefix EXPO- --count 50 --type PERCENTAGE --value 15 --promotion 3
"""

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.core.management.base import BaseCommand, CommandError
from django.db import IntegrityError

from tradeconnect.promotions.codes import PromoCodeBatch, generate_promo_codes
from tradeconnect.promotions.models import PromoCode, Promotion

if TYPE_CHECKING:
    import argparse


class Command(BaseCommand):
    """Generate a batch of unique promo codes."""

    help = "Generate a batch of unique promo codes sharing one discount configuration"

    def add_arguments(self, parser: "argparse.ArgumentParser") -> None:
        """Register command-line arguments.

        Args:
            parser: The argument parser to add arguments to.
        """
        parser.add_argument("--prefix", default="", help="Fixed prefix for every code.")
        parser.add_argument("--count", type=int, required=True, help="Number of codes to create (1-500).")
        parser.add_argument(
            "--type",
            dest="discount_type",
            choices=PromoCode.DiscountType.values,
            default=PromoCode.DiscountType.PERCENTAGE,
            help="Discount type.",
        )
        parser.add_argument("--value", required=True, help="Discount value (percentage, amount or price).")
        parser.add_argument("--buy", type=int, help="Paid units per group (BUY_X_GET_Y only).")
        parser.add_argument("--free", type=int, help="Free units per group (BUY_X_GET_Y only).")
        parser.add_argument("--max-uses", type=int, default=1, help="Uses per code; 0 for unlimited.")
        parser.add_argument("--promotion", type=int, help="Primary key of the parent promotion.")

    def handle(self, **options: object) -> None:
        """Create the codes and print them one per line."""
        try:
            value = Decimal(str(options["value"]))
        except InvalidOperation:
            msg = f"Invalid discount value '{options['value']}'"
            raise CommandError(msg) from None

        promotion = None
        if options["promotion"] is not None:
            try:
                promotion = Promotion.objects.get(pk=options["promotion"])
            except Promotion.DoesNotExist:
                msg = f"Promotion {options['promotion']} not found"
                raise CommandError(msg) from None

        max_uses = int(options["max_uses"])
        if options["discount_type"] == PromoCode.DiscountType.BUY_X_GET_Y and not (options["buy"] and options["free"]):
            msg = "BUY_X_GET_Y codes need both --buy and --free"
            raise CommandError(msg)

        batch = PromoCodeBatch(
            prefix=str(options["prefix"]),
            count=int(options["count"]),
            discount_type=str(options["discount_type"]),
            discount_value=value,
            max_uses_total=max_uses or None,
            buy_quantity=options["buy"],
            free_quantity=options["free"],
            promotion=promotion,
        )
        try:
            codes = generate_promo_codes(batch)
        except (ValueError, RuntimeError, IntegrityError) as exc:
            raise CommandError(str(exc)) from None

        for promo_code in codes:
            self.stdout.write(promo_code.code)
        self.stdout.write(self.style.SUCCESS(f"Generated {len(codes)} promo codes"))
