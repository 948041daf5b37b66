"""Cart totals: subtotal, discounts, VAT and grand total in base currency."""

from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional, Tuple

from models import CartItem

# Base (internal) pricing config, in base currency units
DISCOUNT_THRESHOLD_BASE = 50
DISCOUNT_PERCENT = 0.10

COUPON_CODE = "TENTEN"
COUPON_PERCENT = 0.10


class CouponError(ValueError):
    pass


@dataclass(frozen=True)
class Totals:
    subtotal: float
    auto_discount: float
    coupon_discount: float
    discount: float
    vat: float
    delivery_fee: float
    grand_total: float
    item_count: int

    @property
    def subtotal_after_discount(self) -> float:
        return round(self.subtotal - self.discount, 2)

    def as_dict(self) -> dict:
        out = asdict(self)
        out["subtotal_after_discount"] = self.subtotal_after_discount
        return out


def partition_items(items: Iterable[CartItem]) -> Tuple[List[CartItem], List[CartItem]]:
    available, unavailable = [], []
    for item in items:
        (available if item.product.is_available else unavailable).append(item)
    return available, unavailable


def normalize_coupon(raw: Optional[str]) -> str:
    code = (raw or "").strip()
    if not code:
        raise CouponError("Please enter a coupon code.")
    code = code.upper()
    if code != COUPON_CODE:
        raise CouponError("Invalid coupon code.")
    return code


def derive_totals(
    items: Iterable[CartItem],
    vat_rate: float,
    applied_coupon: Optional[str] = None,
    delivery_fee: float = 0.0,
) -> Totals:
    """Recompute every total from scratch.

    Unavailable items are ignored entirely. The automatic and coupon
    discounts are both taken from the same subtotal and added, they do not
    compound. VAT is charged on the discounted subtotal; the delivery fee is
    added after VAT.
    """
    available, _ = partition_items(items)

    subtotal = sum(item.product.price * item.quantity for item in available)
    auto_discount = subtotal * DISCOUNT_PERCENT if subtotal >= DISCOUNT_THRESHOLD_BASE else 0.0
    coupon_discount = subtotal * COUPON_PERCENT if applied_coupon == COUPON_CODE else 0.0

    subtotal = round(subtotal, 2)
    auto_discount = round(auto_discount, 2)
    coupon_discount = round(coupon_discount, 2)
    discount = round(auto_discount + coupon_discount, 2)

    vat = round((subtotal - discount) * vat_rate, 2)
    grand_total = round(subtotal - discount + vat + delivery_fee, 2)

    return Totals(
        subtotal=subtotal,
        auto_discount=auto_discount,
        coupon_discount=coupon_discount,
        discount=discount,
        vat=vat,
        delivery_fee=round(delivery_fee, 2),
        grand_total=grand_total,
        item_count=sum(item.quantity for item in available),
    )
