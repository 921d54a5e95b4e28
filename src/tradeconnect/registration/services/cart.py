"""Cart management service.

Handles cart lifecycle, item management and promo codes. Every mutation
locks the cart row, applies the change and re-prices the whole cart in the
same transaction, so totals are never observable half-written and two
concurrent mutations of one cart are serialized.
"""

import logging
from datetime import datetime, timedelta

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from tradeconnect.errors import ErrorCode, PromoCodeIneligible
from tradeconnect.events.models import Event
from tradeconnect.pricing.engine import CartPrice, price_cart
from tradeconnect.pricing.evaluators import PromoCodeEvaluator
from tradeconnect.pricing.money import Money
from tradeconnect.pricing.rules import LineContext
from tradeconnect.promotions.models import PromoCode
from tradeconnect.promotions.stores import DjangoPricingStore, PricingStore, user_profile
from tradeconnect.registration.models import Cart, CartItem, ParticipantType
from tradeconnect.settings import get_config

logger = logging.getLogger(__name__)

_store: PricingStore = DjangoPricingStore()


class CartService:
    """Stateless service for cart operations.

    All methods are static. Methods that accept ``now`` use it as the
    evaluation time for expiry and date-based discounts; it defaults to the
    current time.
    """

    @staticmethod
    @transaction.atomic
    def get_or_create_cart(session_id: str, user: object | None = None, *, now: datetime | None = None) -> Cart:
        """Return the open cart for ``session_id``, creating one if needed.

        A cart past its ``expires_at`` or already checked out is discarded
        and replaced by a fresh one. A guest cart is attached to ``user``
        when one is given.
        """
        now = now or timezone.now()
        config = get_config()

        cart = Cart.objects.select_for_update().filter(session_id=session_id).first()
        if cart is not None and (cart.status != Cart.Status.OPEN or cart.expires_at <= now):
            logger.info("Discarding cart %s (status=%s) for session %s", cart.pk, cart.status, session_id)
            cart.delete()
            cart = None

        if cart is None:
            return Cart.objects.create(
                session_id=session_id,
                user=user,
                status=Cart.Status.OPEN,
                expires_at=now + timedelta(hours=config.cart_expiry_hours),
                last_activity=now,
            )

        if user is not None and cart.user_id is None:
            cart.user = user
            cart.save(update_fields=["user", "updated_at"])
        return cart

    @staticmethod
    @transaction.atomic
    def add_item(
        cart: Cart,
        event: Event,
        quantity: int = 1,
        *,
        participant_type: str = ParticipantType.INDIVIDUAL,
        participant_data: dict | None = None,
        group_data: dict | None = None,
        now: datetime | None = None,
    ) -> CartItem:
        """Add ``quantity`` seats of ``event`` to the cart.

        Lines without participant or group data are merged per event and
        participant type; lines carrying such data are always kept separate.

        Raises:
            ValidationError: If the cart cannot be modified, the event is not
                on sale, or the line quantity would leave 1..max_item_quantity.
        """
        now = now or timezone.now()
        cart = _lock_open_cart(cart, now)
        _validate_quantity(quantity)

        if not event.is_purchasable:
            raise ValidationError(f"Event '{event.title}' is not available for registration.")
        if event.start_date <= now:
            raise ValidationError(f"Event '{event.title}' has already started.")

        item = None
        if participant_data is None and group_data is None:
            item = cart.items.filter(
                event=event,
                participant_type=participant_type,
                participant_data__isnull=True,
                group_data__isnull=True,
            ).first()

        if item is not None:
            _validate_quantity(item.quantity + quantity)
            item.quantity += quantity
            item.save(update_fields=["quantity", "updated_at"])
        else:
            item = CartItem.objects.create(
                cart=cart,
                event=event,
                participant_type=participant_type,
                quantity=quantity,
                base_price=event.base_price,
                participant_data=participant_data,
                group_data=group_data,
            )

        _touch(cart, now)
        CartService.recalculate(cart, now=now)
        item.refresh_from_db()
        return item

    @staticmethod
    @transaction.atomic
    def remove_item(cart: Cart, item_id: int, *, now: datetime | None = None) -> None:
        """Remove a line from the cart.

        Raises:
            ValidationError: If the item does not exist or does not belong
                to this cart.
        """
        now = now or timezone.now()
        cart = _lock_open_cart(cart, now)
        deleted, _ = cart.items.filter(pk=item_id).delete()
        if not deleted:
            raise ValidationError("Cart item not found.")
        _touch(cart, now)
        CartService.recalculate(cart, now=now)

    @staticmethod
    @transaction.atomic
    def update_quantity(cart: Cart, item_id: int, quantity: int, *, now: datetime | None = None) -> CartItem | None:
        """Set a line's quantity; zero or less removes the line.

        Returns:
            The updated CartItem, or ``None`` if the item was removed.
        """
        now = now or timezone.now()
        if quantity <= 0:
            CartService.remove_item(cart, item_id, now=now)
            return None

        cart = _lock_open_cart(cart, now)
        _validate_quantity(quantity)
        try:
            item = cart.items.get(pk=item_id)
        except CartItem.DoesNotExist:
            raise ValidationError("Cart item not found.") from None

        item.quantity = quantity
        item.save(update_fields=["quantity", "updated_at"])
        _touch(cart, now)
        CartService.recalculate(cart, now=now)
        item.refresh_from_db()
        return item

    @staticmethod
    @transaction.atomic
    def apply_promo_code(cart: Cart, code: str, *, now: datetime | None = None) -> PromoCode:
        """Attach a promo code after validating it against the current cart.

        Validation happens before anything is written, so an ineligible
        code leaves the cart untouched.

        Raises:
            PromoCodeIneligible: With the specific rejection reason.
        """
        now = now or timezone.now()
        cart = _lock_open_cart(cart, now)
        promo_code = _store.get_promo_code(code)

        items = list(cart.items.select_related("event").order_by("pk"))
        if not items:
            raise PromoCodeIneligible(
                ErrorCode.PROMOTION_NOT_APPLICABLE,
                "Add an event to your cart before applying a promo code.",
            )
        price_items(cart, items, promo_code, now)

        cart.promo_code = promo_code
        cart.save(update_fields=["promo_code", "updated_at"])
        _touch(cart, now)
        CartService.recalculate(cart, now=now)
        logger.info("Promo code %s applied to cart %s", promo_code.code, cart.pk)
        return promo_code

    @staticmethod
    @transaction.atomic
    def remove_promo_code(cart: Cart, *, now: datetime | None = None) -> None:
        now = now or timezone.now()
        cart = _lock_open_cart(cart, now)
        cart.promo_code = None
        cart.save(update_fields=["promo_code", "updated_at"])
        _touch(cart, now)
        CartService.recalculate(cart, now=now)

    @staticmethod
    @transaction.atomic
    def clear(cart: Cart, *, now: datetime | None = None) -> None:
        """Remove every line and the promo code."""
        now = now or timezone.now()
        cart = _lock_open_cart(cart, now)
        cart.items.all().delete()
        cart.promo_code = None
        cart.save(update_fields=["promo_code", "updated_at"])
        _touch(cart, now)
        CartService.recalculate(cart, now=now)

    @staticmethod
    @transaction.atomic
    def recalculate(cart: Cart, *, now: datetime | None = None) -> CartPrice:
        """Re-price every line and write item and cart totals.

        Idempotent: with no intervening change a second call writes the same
        values. A promo code that no longer validates is detached and the
        cart is priced without it.

        Returns:
            The pricing result that was persisted.
        """
        now = now or timezone.now()
        cart = Cart.objects.select_for_update().select_related("promo_code", "user").get(pk=cart.pk)
        items = list(cart.items.select_related("event").order_by("pk"))

        promo_code = cart.promo_code
        try:
            price = price_items(cart, items, promo_code, now)
        except PromoCodeIneligible as exc:
            logger.warning(
                "Detaching promo code %s from cart %s: %s",
                promo_code.code,
                cart.pk,
                exc.reason,
            )
            cart.promo_code = None
            price = price_items(cart, items, None, now)

        for item in items:
            line = price.line(item.pk)
            item.discount_amount = line.discount.amount
            item.final_price = line.final_price.amount
            item.applied_discounts = line.rule_ids
            item.save(update_fields=["discount_amount", "final_price", "applied_discounts", "updated_at"])

        cart.total_items = price.total_items
        cart.subtotal = price.subtotal.amount
        cart.discount_amount = price.discount.amount
        cart.total = price.total.amount
        cart.promo_discount = price.promo_discount.amount
        cart.save(
            update_fields=[
                "total_items",
                "subtotal",
                "discount_amount",
                "total",
                "promo_code",
                "promo_discount",
                "updated_at",
            ]
        )
        return price


def line_contexts(items: list[CartItem], now: datetime, user: object | None = None) -> list[LineContext]:
    """Build pricing contexts for cart items (``event`` must be loaded)."""
    profile = user_profile(user)
    return [
        LineContext(
            item_id=item.pk,
            event=item.event.to_pricing(),
            quantity=item.quantity,
            unit_price=Money.parse(item.base_price),
            now=now,
            user=profile,
        )
        for item in items
    ]


def price_items(cart: Cart, items: list[CartItem], promo_code: PromoCode | None, now: datetime) -> CartPrice:
    """Run the pure pricing pass for ``items`` with an optional promo code.

    Nothing is written. Raises :class:`PromoCodeIneligible` if
    ``promo_code`` does not validate against the items.
    """
    lines = line_contexts(items, now, cart.user)
    rules = _store.event_rules({item.event_id for item in items})
    evaluator = None
    if promo_code is not None:
        evaluator = PromoCodeEvaluator(
            _store.promo_code_rule(promo_code),
            prior_uses=_store.prior_uses(promo_code, cart.user),
        )
    profile = lines[0].user if lines else None
    return price_cart(lines, rules, now=now, promo=evaluator, user=profile)


def _lock_open_cart(cart: Cart, now: datetime) -> Cart:
    """Lock the cart row and raise ValidationError when it cannot be modified."""
    locked = Cart.objects.select_for_update().get(pk=cart.pk)
    if locked.status != Cart.Status.OPEN:
        raise ValidationError("Only open carts can be modified.")
    if locked.expires_at <= now:
        raise ValidationError("Cart has expired.")
    return locked


def _validate_quantity(quantity: int) -> None:
    limit = get_config().max_item_quantity
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.")
    if quantity > limit:
        raise ValidationError(f"Quantity cannot exceed {limit} per item.")


def _touch(cart: Cart, now: datetime) -> None:
    """Record activity on the cart and clear any abandonment flag."""
    cart.last_activity = now
    cart.is_abandoned = False
    cart.abandoned_at = None
    cart.save(update_fields=["last_activity", "is_abandoned", "abandoned_at", "updated_at"])
