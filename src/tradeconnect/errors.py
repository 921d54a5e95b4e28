"""Error taxonomy for the TradeConnect pricing and reservation core.

User-recoverable rule violations subclass Django's ``ValidationError`` so
they flow through the same handling as every other service error. External
collaborator failures subclass ``RuntimeError``.
"""

import enum

from django.core.exceptions import ValidationError


class ErrorCode(enum.StrEnum):
    """Machine-readable reasons attached to rejected operations."""

    PROMO_CODE_NOT_FOUND = "PROMO_CODE_NOT_FOUND"
    PROMO_CODE_INACTIVE = "PROMO_CODE_INACTIVE"
    PROMO_CODE_NOT_STARTED = "PROMO_CODE_NOT_STARTED"
    PROMO_CODE_EXPIRED = "PROMO_CODE_EXPIRED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    USER_LIMIT_REACHED = "USER_LIMIT_REACHED"
    BELOW_MINIMUM_PURCHASE = "BELOW_MINIMUM_PURCHASE"
    PROMOTION_NOT_APPLICABLE = "PROMOTION_NOT_APPLICABLE"
    CONCURRENT_CLAIM_CONFLICT = "CONCURRENT_CLAIM_CONFLICT"


class InvalidMoneyFormat(ValueError):
    """Raised when a monetary value cannot be parsed without precision loss."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid money value: {value!r}")
        self.value = value


class PromoCodeIneligible(ValidationError):
    """Raised when a promo code cannot be applied, with a specific reason."""

    def __init__(self, reason: ErrorCode, message: str) -> None:
        super().__init__(message, code=str(reason))
        self.reason = reason


class ConcurrentClaimConflict(PromoCodeIneligible):
    """Raised when the usage ledger's conditional update affected zero rows."""

    def __init__(self, code: str, detail: str = "") -> None:
        message = f"Promo code '{code}' is no longer available."
        if detail:
            message = f"{message} {detail}"
        super().__init__(ErrorCode.CONCURRENT_CLAIM_CONFLICT, message)
        self.promo_code = code


class ReservationExpired(ValidationError):
    """Raised when a registration's reservation window has elapsed."""

    def __init__(self, registration_code: str) -> None:
        super().__init__(
            f"Reservation {registration_code} has expired. Please start a new registration.",
            code="RESERVATION_EXPIRED",
        )
        self.registration_code = registration_code


class InvalidTransition(ValidationError):
    """Raised when a registration status change is not allowed."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move registration from {current} to {target}.",
            code="INVALID_TRANSITION",
        )
        self.current = current
        self.target = target


class GatewayError(RuntimeError):
    """Raised by payment gateways; ``transient`` errors may be retried."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class FelError(RuntimeError):
    """Raised when FEL certification of an invoice fails."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient
