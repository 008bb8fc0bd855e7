"""
Fee-Split Calculator.

Divides an order item's subtotal between:
1. the seller (who also bears the payment processing fee)
2. the platform
3. a buyer-affiliate, carved out of the seller's share
4. a seller-affiliate, carved out of the platform's share

Every amount is an integer in minor currency units. Rounding remainders are
absorbed by the platform's share, so

    subtotal == seller + processing_fee + platform + buyer_affiliate + seller_affiliate

holds exactly for every call. Rates passed in must already be resolved for
expiry (see resolve_rate); the calculator does no time checks.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING
from typing import Optional, Union

from payout_ledger.config import Settings, settings as app_settings
from payout_ledger.services.payout_period import ensure_utc


Rate = Union[Decimal, int, float, str]

ZERO = Decimal("0")
ONE = Decimal("1")


class ConservationViolation(AssertionError):
    """The split does not add back up to the subtotal. Programmer error."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


@dataclass(frozen=True)
class FeeConfig:
    """Fee constants passed explicitly into the calculator."""
    payment_fee_percent: Decimal = Decimal("0.036")
    payment_fee_fixed: int = 30
    platform_fee_rate: Decimal = Decimal("0.15")
    max_buyer_affiliate_rate: Decimal = Decimal("0.5")
    default_seller_affiliate_rate: Decimal = Decimal("0.05")
    default_buyer_affiliate_rate: Decimal = Decimal("0.25")

    @property
    def seller_fee_rate(self) -> Decimal:
        return ONE - self.platform_fee_rate

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "FeeConfig":
        s = settings or app_settings
        return cls(
            payment_fee_percent=Decimal(s.PAYMENT_FEE_PERCENTAGE),
            payment_fee_fixed=s.PAYMENT_FEE_FIXED,
            platform_fee_rate=Decimal(s.PLATFORM_FEE_PERCENTAGE),
            max_buyer_affiliate_rate=Decimal(s.MAX_BUYER_AFFILIATE_FEE_PERCENTAGE),
            default_seller_affiliate_rate=Decimal(s.DEFAULT_SELLER_AFFILIATE_FEE_PERCENTAGE),
            default_buyer_affiliate_rate=Decimal(s.DEFAULT_BUYER_AFFILIATE_FEE_PERCENTAGE),
        )


@dataclass(frozen=True)
class FeeSplit:
    subtotal: int
    seller_earnings: int
    payment_processing_fee: int
    platform_earnings: int
    buyer_affiliate_earnings: int
    seller_affiliate_earnings: int

    @property
    def total(self) -> int:
        return (
            self.seller_earnings
            + self.payment_processing_fee
            + self.platform_earnings
            + self.buyer_affiliate_earnings
            + self.seller_affiliate_earnings
        )

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "seller_earnings": self.seller_earnings,
            "payment_processing_fee": self.payment_processing_fee,
            "platform_earnings": self.platform_earnings,
            "buyer_affiliate_earnings": self.buyer_affiliate_earnings,
            "seller_affiliate_earnings": self.seller_affiliate_earnings,
        }


def _to_decimal(value: Rate) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.036 as 0.036 instead of its binary float expansion
    return Decimal(str(value))


def round_half_away(value: Decimal) -> int:
    return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


def ceil_int(value: Decimal) -> int:
    return int(value.quantize(ONE, rounding=ROUND_CEILING))


def calculate_payment_processing_fee(subtotal: int, config: FeeConfig) -> int:
    return round_half_away(subtotal * config.payment_fee_percent) + config.payment_fee_fixed


def resolve_rate(
    rate: Optional[Rate],
    expires_at: Optional[datetime],
    default: Rate,
    at: Optional[datetime] = None,
) -> Decimal:
    """
    Pick the rate to use at time `at`.

    - no policy (rate is None): default
    - policy without expiry: its own rate, forever
    - policy expiring after `at`: its own rate
    - expired policy: default
    """
    if rate is None:
        return _to_decimal(default)
    if expires_at is None:
        return _to_decimal(rate)
    at = ensure_utc(at) if at else datetime.now(timezone.utc)
    if ensure_utc(expires_at) > at:
        return _to_decimal(rate)
    return _to_decimal(default)


def calculate_fee_split(
    subtotal: int,
    incoming_processing_fee: int = 0,
    seller_rate: Optional[Rate] = None,
    buyer_affiliate_rate: Rate = ZERO,
    seller_affiliate_rate: Rate = ZERO,
    config: Optional[FeeConfig] = None,
) -> FeeSplit:
    """
    Split one order item's subtotal.

    Args:
        subtotal: Item price in minor units, >= 0
        incoming_processing_fee: Fee already charged by the processor; 0 means compute it
        seller_rate: Seller's share; defaults to 1 - platform rate
        buyer_affiliate_rate: Clamped to config.max_buyer_affiliate_rate
        seller_affiliate_rate: Share of the platform's cut, relative to the platform rate
        config: Fee constants

    Raises:
        ValueError: negative subtotal or a rate outside [0, 1]
        ConservationViolation: the parts do not add up to the subtotal
    """
    config = config or FeeConfig()
    if subtotal < 0:
        raise ValueError(f"subtotal must be >= 0, got {subtotal}")

    seller_rate = config.seller_fee_rate if seller_rate is None else _to_decimal(seller_rate)
    buyer_affiliate_rate = _to_decimal(buyer_affiliate_rate)
    seller_affiliate_rate = _to_decimal(seller_affiliate_rate)
    for name, rate in (
        ("seller_rate", seller_rate),
        ("buyer_affiliate_rate", buyer_affiliate_rate),
        ("seller_affiliate_rate", seller_affiliate_rate),
    ):
        if rate < ZERO or rate > ONE:
            raise ValueError(f"{name} must be within [0, 1], got {rate}")

    if incoming_processing_fee != 0:
        processing_fee = incoming_processing_fee
    else:
        processing_fee = calculate_payment_processing_fee(subtotal, config)

    seller_earnings = ceil_int(subtotal * seller_rate)
    platform_share = subtotal - seller_earnings

    # Seller-affiliate is paid out of the platform's share, scaled against the platform rate
    if seller_affiliate_rate == ZERO:
        seller_affiliate_earnings = 0
        platform_earnings = platform_share
    elif seller_affiliate_rate <= config.platform_fee_rate:
        seller_affiliate_earnings = round_half_away(
            seller_affiliate_rate * platform_share / config.platform_fee_rate
        )
        platform_earnings = platform_share - seller_affiliate_earnings
    else:
        seller_affiliate_earnings = platform_share
        platform_earnings = 0

    clamped_rate = min(buyer_affiliate_rate, config.max_buyer_affiliate_rate)
    buyer_affiliate_earnings = 0
    if clamped_rate > ZERO:
        buyer_affiliate_earnings = round_half_away(
            clamped_rate * seller_earnings / config.seller_fee_rate
        )
    seller_earnings = seller_earnings - buyer_affiliate_earnings - processing_fee

    split = FeeSplit(
        subtotal=subtotal,
        seller_earnings=seller_earnings,
        payment_processing_fee=processing_fee,
        platform_earnings=platform_earnings,
        buyer_affiliate_earnings=buyer_affiliate_earnings,
        seller_affiliate_earnings=seller_affiliate_earnings,
    )
    if split.total != subtotal:
        raise ConservationViolation(
            f"Fee split adds up to {split.total}, expected {subtotal}",
            details=split.to_dict(),
        )
    return split
