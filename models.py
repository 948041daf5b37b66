import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for every model that crosses the wire or local storage.

    The backend and the persisted browser state both use camelCase keys,
    python code uses snake_case attributes.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------- catalog ----------


def normalize_product_id(value):
    """Digit-only string ids become ints, so "5" and 5 name the same product."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isascii() and stripped.isdigit():
            return int(stripped)
    return value


class ProductDto(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    base_price: float
    image_url: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    is_active: Optional[bool] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None


class Product(CamelModel):
    # ids read back from storage are not trusted to be numeric, checkout checks them
    id: int | str
    name: str
    description: str = ""
    price: float
    image_url: str = ""
    rating: float = 0.0
    category: str = "Other"
    available: Optional[bool] = None

    @field_validator("id")
    @classmethod
    def _digit_string_id_to_int(cls, value):
        return normalize_product_id(value)

    @property
    def is_available(self) -> bool:
        return self.available is not False


class CartItem(CamelModel):
    product: Product
    quantity: int


# ---------- auth ----------

UserRole = Literal["ADMIN", "MANAGER", "CUSTOMER"]


class UserResponse(CamelModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: UserRole = "CUSTOMER"
    is_active: Optional[bool] = None
    email_verified: Optional[bool] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None


class AuthResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    user: UserResponse


class LoginPayload(CamelModel):
    email: EmailStr
    password: str


class RegisterPayload(CamelModel):
    email: EmailStr
    password: str
    confirm_password: str
    first_name: str
    last_name: str
    phone: Optional[str] = None


class LoginForm(CamelModel):
    email: str = ""
    password: str = ""


class RegisterForm(CamelModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    password: str = ""
    confirm_password: str = ""


# ---------- orders ----------

FulfillmentMethod = Literal["PICKUP", "DELIVERY", "BOOKING"]
PaymentMethod = Literal["CARD", "CASH_ON_DELIVERY"]


class OrderItemRequest(CamelModel):
    product_id: int
    quantity: int


class CreateOrderRequest(CamelModel):
    fulfillment_method: FulfillmentMethod
    payment_method: PaymentMethod

    items_subtotal: float
    discount: float
    vat_amount: float
    delivery_fee: float

    order_date: str
    time_slot_id: Optional[str] = None
    guests: Optional[int] = None

    pickup_venue_id: Optional[str] = None

    delivery_zone_id: Optional[str] = None
    delivery_address_line1: Optional[str] = None
    delivery_address_line2: Optional[str] = None
    delivery_city: Optional[str] = None
    delivery_state: Optional[str] = None
    delivery_zip: Optional[str] = None
    delivery_instructions: Optional[str] = None

    items: List[OrderItemRequest]

    country_code: str


class ApiOrder(CamelModel):
    id: int
    order_number: str
    status: str
    total_amount: float
    created_at: str
    fulfillment_method: Optional[FulfillmentMethod] = None
    payment_method: Optional[PaymentMethod] = None


def _today() -> str:
    return datetime.date.today().isoformat()


class CheckoutForm(CamelModel):
    # billing
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    state_val: str = ""
    city: str = ""
    zip_code: str = Field("", alias="zip")

    # fulfillment
    fulfillment_method: Literal["pickup", "delivery", "booking"] = "pickup"
    order_date: str = Field(default_factory=_today)
    selected_venue: str = ""
    delivery_zone_id: str = ""
    street_address: str = ""
    apartment: str = ""
    selected_time_slot_id: str = ""
    guests: str = ""

    # payment
    payment_method: Literal["card", "cash_on_delivery"] = "card"
    card_number: str = ""
    expiry_month: str = ""
    expiry_year: str = ""
    security_code: str = ""


# ---------- reports ----------


class RegionBucket(CamelModel):
    region: str
    total_amount: float = 0.0
    orders_count: int = 0


class MonthBucket(CamelModel):
    month_key: str
    total_amount: float = 0.0
    orders_count: int = 0


class SalesReportResponse(CamelModel):
    from_date: str
    to_date: str

    total_subtotal: Optional[float] = None
    total_vat: Optional[float] = None
    total_discount: Optional[float] = None
    total_delivery_fee: Optional[float] = None
    total_amount: Optional[float] = None

    average_check: Optional[float] = None
    orders_count: Optional[int] = None

    region_buckets: List[RegionBucket] = []
    month_buckets: List[MonthBucket] = []


# ---------- storefront requests ----------


class AddToCartRequest(BaseModel):
    product_id: int


class RemoveFromCartRequest(BaseModel):
    product_id: int


class SetQuantityRequest(BaseModel):
    product_id: int
    quantity: int


class CouponRequest(BaseModel):
    code: str = ""


class CountryRequest(BaseModel):
    code: str
