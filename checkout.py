"""Checkout: form validation, order request building and submission."""

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from api import ApiError
from models import CartItem, CheckoutForm, CreateOrderRequest, OrderItemRequest
from pricing import Totals, derive_totals, partition_items

logger = logging.getLogger(__name__)

REQUIRED = "Required."
INVALID_CART_MESSAGE = "Cart contains invalid product. Please clear cart and try again."


@dataclass(frozen=True)
class TimeSlot:
    id: str
    label: str
    available: bool


@dataclass(frozen=True)
class DeliveryZone:
    id: str
    label: str
    fee: float


TIME_SLOTS = (
    TimeSlot("10-1030", "10:00 – 10:30", True),
    TimeSlot("1030-11", "10:30 – 11:00", True),
    TimeSlot("11-1130", "11:00 – 11:30", False),
    TimeSlot("1130-12", "11:30 – 12:00", True),
    TimeSlot("12-1230", "12:00 – 12:30", True),
)

PICKUP_VENUES = {
    "venue-1": "Main Street Cafe",
    "venue-2": "Riverside Branch",
    "venue-3": "Uptown Corner",
}

DELIVERY_ZONES = {
    zone.id: zone
    for zone in (
        DeliveryZone("zone-1", "Zone 1 (Near Center)", 3.0),
        DeliveryZone("zone-2", "Zone 2 (Citywide)", 5.0),
        DeliveryZone("zone-3", "Zone 3 (Outer Area)", 7.5),
    )
}

FULFILLMENT_TO_API = {"pickup": "PICKUP", "delivery": "DELIVERY", "booking": "BOOKING"}
PAYMENT_TO_API = {"card": "CARD", "cash_on_delivery": "CASH_ON_DELIVERY"}


class InvalidCartError(Exception):
    def __init__(self, message: str = INVALID_CART_MESSAGE):
        super().__init__(message)
        self.message = message


def delivery_fee_for(form: CheckoutForm) -> float:
    if form.fulfillment_method != "delivery":
        return 0.0
    zone = DELIVERY_ZONES.get(form.delivery_zone_id)
    return zone.fee if zone else 0.0


def _parse_guests(value: str) -> Optional[int]:
    value = value.strip()
    if not value.isdigit():
        return None
    guests = int(value)
    return guests if guests > 0 else None


def validate_checkout(form: CheckoutForm, available_items: List[CartItem]) -> Dict[str, str]:
    """Collect every problem with the form, keyed by form field name."""
    errors: Dict[str, str] = {}

    if not form.first_name.strip():
        errors["firstName"] = REQUIRED
    if not form.last_name.strip():
        errors["lastName"] = REQUIRED
    if not form.email.strip():
        errors["email"] = REQUIRED
    if not form.state_val.strip():
        errors["stateVal"] = REQUIRED
    if not form.city.strip():
        errors["city"] = REQUIRED
    if not form.zip_code.strip():
        errors["zip"] = REQUIRED
    if not form.order_date:
        errors["orderDate"] = REQUIRED

    if not form.selected_time_slot_id:
        errors["selectedTimeSlotId"] = REQUIRED
    else:
        slot = next((s for s in TIME_SLOTS if s.id == form.selected_time_slot_id), None)
        if slot is None:
            errors["selectedTimeSlotId"] = "Unknown time slot."
        elif not slot.available:
            errors["selectedTimeSlotId"] = "This time slot is fully booked."

    if form.fulfillment_method == "pickup":
        if not form.selected_venue:
            errors["selectedVenue"] = REQUIRED
        elif form.selected_venue not in PICKUP_VENUES:
            errors["selectedVenue"] = "Unknown pickup venue."

    if form.fulfillment_method == "delivery":
        if not form.delivery_zone_id:
            errors["deliveryZoneId"] = REQUIRED
        elif form.delivery_zone_id not in DELIVERY_ZONES:
            errors["deliveryZoneId"] = "Unknown delivery zone."
        if not form.street_address.strip():
            errors["streetAddress"] = REQUIRED

    if form.fulfillment_method == "booking":
        if not form.guests.strip():
            errors["guests"] = REQUIRED
        elif _parse_guests(form.guests) is None:
            errors["guests"] = "Enter a number of guests."

    if form.payment_method == "card":
        if not form.card_number.strip():
            errors["cardNumber"] = REQUIRED
        if not form.expiry_month.strip():
            errors["expiryMonth"] = REQUIRED
        if not form.expiry_year.strip():
            errors["expiryYear"] = REQUIRED
        if not form.security_code.strip():
            errors["securityCode"] = REQUIRED

    if not available_items:
        errors["items"] = "Your cart is empty."

    return errors


def _numeric_product_id(product_id) -> int:
    if isinstance(product_id, bool):
        raise InvalidCartError()
    if isinstance(product_id, int):
        return product_id
    if isinstance(product_id, str) and product_id.strip().isdigit():
        return int(product_id.strip())
    raise InvalidCartError()


def order_items(items: List[CartItem]) -> List[OrderItemRequest]:
    lines = []
    for item in items:
        try:
            product_id = _numeric_product_id(item.product.id)
        except InvalidCartError:
            logger.error("invalid product id in cart item: %r", item.product.id)
            raise
        lines.append(OrderItemRequest(product_id=product_id, quantity=item.quantity))
    return lines


def build_order_request(
    form: CheckoutForm,
    available_items: List[CartItem],
    totals: Totals,
    country_code: str,
) -> CreateOrderRequest:
    method = form.fulfillment_method
    is_delivery = method == "delivery"
    return CreateOrderRequest(
        fulfillment_method=FULFILLMENT_TO_API[method],
        payment_method=PAYMENT_TO_API[form.payment_method],
        items_subtotal=totals.subtotal,
        discount=totals.discount,
        vat_amount=totals.vat,
        delivery_fee=totals.delivery_fee,
        order_date=form.order_date,
        time_slot_id=form.selected_time_slot_id or None,
        guests=_parse_guests(form.guests) if method == "booking" else None,
        pickup_venue_id=form.selected_venue if method == "pickup" else None,
        delivery_zone_id=form.delivery_zone_id if is_delivery else None,
        delivery_address_line1=form.street_address if is_delivery else None,
        delivery_address_line2=form.apartment if is_delivery else None,
        delivery_city=form.city if is_delivery else None,
        delivery_state=form.state_val if is_delivery else None,
        delivery_zip=form.zip_code if is_delivery else None,
        delivery_instructions=None,
        items=order_items(available_items),
        country_code=country_code,
    )


class CheckoutState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    ERROR = "error"


class CheckoutInProgress(Exception):
    pass


class CheckoutFlow:
    """One checkout form and its submission state.

    ``submit`` walks idle -> validating -> (idle with errors | submitting)
    -> success | error. A second submit while one is in flight is refused;
    there are no retries.
    """

    def __init__(self, cart, country, client):
        self.cart = cart
        self.country = country
        self.client = client
        self.state = CheckoutState.IDLE
        self.errors: Dict[str, str] = {}
        self.message = ""
        self.error_status = 502
        self.order: Optional[dict] = None
        self.totals: Optional[Totals] = None

    def preview(self, form: CheckoutForm, applied_coupon: Optional[str] = None) -> Totals:
        return derive_totals(
            self.cart.items,
            self.country.config.vat_rate,
            applied_coupon=applied_coupon,
            delivery_fee=delivery_fee_for(form),
        )

    def submit(self, form: CheckoutForm, applied_coupon: Optional[str] = None) -> CheckoutState:
        if self.state is CheckoutState.SUBMITTING:
            raise CheckoutInProgress("Order submission already in progress.")

        self.state = CheckoutState.VALIDATING
        self.message = ""
        self.error_status = 502
        self.order = None

        available, _ = partition_items(self.cart.items)
        errors = validate_checkout(form, available)
        if errors:
            self.errors = errors
            self.state = CheckoutState.IDLE
            self.message = "Fix highlighted fields."
            return self.state

        self.errors = {}
        self.totals = self.preview(form, applied_coupon)
        try:
            request = build_order_request(form, available, self.totals, self.country.country)
        except InvalidCartError as exc:
            self.state = CheckoutState.ERROR
            self.message = exc.message
            raise

        self.state = CheckoutState.SUBMITTING
        try:
            response = self.client.create_order(request)
        except ApiError as exc:
            self.state = CheckoutState.ERROR
            self.message = exc.message or "Unexpected error."
            if exc.status_code and exc.status_code >= 400:
                self.error_status = exc.status_code
            logger.warning("order submission failed: %s", self.message)
            return self.state

        reply = response if isinstance(response, dict) else {}
        self.state = CheckoutState.SUCCESS
        self.message = reply.get("message") or "Order placed successfully!"
        self.order = reply.get("data")
        self.cart.clear_cart()
        return self.state

    def as_dict(self) -> dict:
        return {
            "status": self.state.value,
            "message": self.message,
            "errors": self.errors,
            "order": self.order,
            "totals": self.totals.as_dict() if self.totals else None,
        }
