"""State the storefront keeps between requests: country, cart and auth session.

Each store owns one slice of a session's local storage and is the only
writer of it. A ``Storefront`` bundles the stores of one browser session,
built in a fixed order (country, auth, cart); ``StorefrontSessions`` hands
out one per session id.
"""

import logging
import re
import secrets
import threading
from collections import OrderedDict
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

import utils
from api import ApiError, BackendClient, fetch_json
from checkout import CheckoutFlow
from models import (
    AuthResponse,
    CartItem,
    LoginForm,
    LoginPayload,
    Product,
    RegisterForm,
    RegisterPayload,
    UserResponse,
    normalize_product_id,
)
from pricing import CouponError, normalize_coupon
from utils import LocalStorage

logger = logging.getLogger(__name__)


# ---------- country / pricing ----------


@dataclass(frozen=True)
class CountryConfig:
    code: str
    label: str
    currency: str  # ISO 4217
    symbol: str
    vat_rate: float  # 0.12 = 12%
    conversion_rate: float  # base USD -> local currency


# Fallback conversion rates are approximate
BASE_COUNTRY_CONFIG: Dict[str, CountryConfig] = {
    "UZB": CountryConfig("UZB", "Uzbekistan", "UZS", "so'm", 0.12, 12500),
    "KAZ": CountryConfig("KAZ", "Kazakhstan", "KZT", "₸", 0.10, 480),
    "GEO": CountryConfig("GEO", "Georgia", "GEL", "₾", 0.08, 2.7),
    "UKR": CountryConfig("UKR", "Ukraine", "UAH", "₴", 0.20, 40),
    "CHN": CountryConfig("CHN", "China", "CNY", "¥", 0.13, 7.2),
}

DEFAULT_COUNTRY = "UZB"


class UnknownCountryError(ValueError):
    pass


def _is_positive_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def rates_by_country(rates) -> Dict[str, float]:
    """Live rates keyed by currency code -> usable rates keyed by country code."""
    if not isinstance(rates, dict):
        return {}
    result = {}
    for code, base in BASE_COUNTRY_CONFIG.items():
        value = rates.get(base.currency)
        if _is_positive_number(value):
            result[code] = float(value)
    return result


def fetch_live_rates(http, url: str, timeout: float = 10.0) -> Optional[dict]:
    """The `rates` mapping of the exchange API, or None (logged) on any failure."""
    try:
        payload = fetch_json(http, "GET", url, timeout=timeout)
    except ApiError as exc:
        logger.warning("exchange rate refresh failed, keeping fallback rates: %s", exc)
        return None
    rates = payload.get("rates") if isinstance(payload, dict) else None
    if not isinstance(rates, dict):
        logger.warning("exchange rate payload has no rates, keeping fallback rates")
        return None
    return rates


class CountryStore:
    def __init__(self, storage: LocalStorage, default: str = DEFAULT_COUNTRY, rates: Optional[Dict[str, float]] = None):
        self.storage = storage
        if default not in BASE_COUNTRY_CONFIG:
            default = DEFAULT_COUNTRY
        stored = storage.get_item(utils.COUNTRY_STORAGE_KEY)
        self.country = stored if stored in BASE_COUNTRY_CONFIG else default
        # shared between the sessions of one process when given
        self.dynamic_rates: Dict[str, float] = rates if rates is not None else {}
        self._rates_requested = False

    @property
    def config(self) -> CountryConfig:
        base = BASE_COUNTRY_CONFIG[self.country]
        override = self.dynamic_rates.get(self.country)
        if _is_positive_number(override):
            return replace(base, conversion_rate=override)
        return base

    def set_country(self, code: str) -> CountryConfig:
        code = (code or "").strip().upper()
        if code not in BASE_COUNTRY_CONFIG:
            raise UnknownCountryError(f"unsupported country: {code or '<empty>'}")
        self.country = code
        self.storage.set_item(utils.COUNTRY_STORAGE_KEY, code)
        return self.config

    def format_price(self, amount_in_base: float) -> str:
        config = self.config
        converted = amount_in_base * config.conversion_rate
        return f"{config.currency} {converted:,.2f}"

    def apply_rates(self, rates) -> None:
        """Take live rates keyed by currency code; keep fallbacks for the rest."""
        self.dynamic_rates.update(rates_by_country(rates))

    def refresh_rates(self, http, url: str, timeout: float = 10.0) -> bool:
        """Fetch live conversion rates once per store.

        Never raises: on any failure the static fallback table stays in use.
        Returns True when rates were applied.
        """
        if self._rates_requested:
            return False
        self._rates_requested = True
        rates = fetch_live_rates(http, url, timeout)
        if rates is None:
            return False
        self.apply_rates(rates)
        logger.info("live exchange rates loaded for %s", ", ".join(sorted(self.dynamic_rates)) or "no countries")
        return True

    def as_dict(self) -> dict:
        config = self.config
        return {
            "code": config.code,
            "label": config.label,
            "currency": config.currency,
            "symbol": config.symbol,
            "vat_rate": config.vat_rate,
            "conversion_rate": config.conversion_rate,
            "announcement": f"Prices updated for {config.label}. Currency {config.currency}.",
        }


# ---------- cart ----------


class CartStore:
    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self.items: List[CartItem] = self._load()

    def _load(self) -> List[CartItem]:
        loaded = self.storage.load_json(utils.CART_STORAGE_KEY)
        if loaded.status is utils.LoadStatus.CORRUPT:
            logger.warning("stored cart is corrupt, starting with an empty cart")
        if not loaded.ok or not isinstance(loaded.value, list):
            return []

        items: List[CartItem] = []
        seen = set()
        for raw in loaded.value:
            try:
                item = CartItem.model_validate(raw)
            except ValidationError:
                logger.warning("dropping malformed cart entry: %r", raw)
                continue
            if item.quantity < 1 or item.product.id in seen:
                continue
            seen.add(item.product.id)
            items.append(item)
        return items

    def _persist(self) -> None:
        self.storage.save_json(utils.CART_STORAGE_KEY, [item.to_json_dict() for item in self.items])

    def _find(self, product_id) -> Optional[CartItem]:
        product_id = normalize_product_id(product_id)
        return next((item for item in self.items if item.product.id == product_id), None)

    def add_to_cart(self, product: Product) -> CartItem:
        existing = self._find(product.id)
        if existing:
            existing.quantity += 1
        else:
            existing = CartItem(product=product, quantity=1)
            self.items.append(existing)
        self._persist()
        return existing

    def remove_from_cart(self, product_id) -> None:
        existing = self._find(product_id)
        if existing is None:
            return
        existing.quantity -= 1
        if existing.quantity <= 0:
            self.items.remove(existing)
        self._persist()

    def set_item_quantity(self, product_id, quantity: int) -> None:
        existing = self._find(product_id)
        if existing is None:
            return
        if quantity <= 0:
            self.items.remove(existing)
        else:
            existing.quantity = quantity
        self._persist()

    def clear_cart(self) -> None:
        self.items = []
        self._persist()

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items if item.product.is_available)


# ---------- auth ----------


class AuthStore:
    def __init__(self, storage: LocalStorage, client: BackendClient):
        self.storage = storage
        self.client = client
        self.user: Optional[UserResponse] = None
        self.access_token: Optional[str] = None

        # a token without a user (or the reverse) is not a session
        token = storage.get_item(utils.ACCESS_TOKEN_KEY)
        user = self._stored_user()
        if token and user:
            self.access_token = token
            self.user = user

    def _stored_user(self) -> Optional[UserResponse]:
        loaded = self.storage.load_json(utils.USER_KEY)
        if not loaded.ok:
            if loaded.status is utils.LoadStatus.CORRUPT:
                logger.warning("failed to parse stored user")
            return None
        try:
            return UserResponse.model_validate(loaded.value)
        except ValidationError:
            logger.warning("failed to parse stored user")
            return None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and bool(self.access_token)

    @property
    def refresh_token(self) -> Optional[str]:
        return self.storage.get_item(utils.REFRESH_TOKEN_KEY)

    @property
    def token_expires_at(self):
        return utils.token_expires_at(self.access_token)

    def _save(self, auth: AuthResponse) -> None:
        self.storage.set_items({
            utils.ACCESS_TOKEN_KEY: auth.access_token,
            utils.REFRESH_TOKEN_KEY: auth.refresh_token,
            utils.USER_KEY: auth.user.model_dump_json(by_alias=True),
        })
        self.access_token = auth.access_token
        self.user = auth.user

    def login(self, payload: LoginPayload) -> AuthResponse:
        auth = self.client.login_user(payload)
        self._save(auth)
        logger.info("user %s logged in", auth.user.email)
        return auth

    def register(self, payload: RegisterPayload) -> AuthResponse:
        # backend returns tokens + user, treated the same as a login
        auth = self.client.register_user(payload)
        self._save(auth)
        logger.info("user %s registered", auth.user.email)
        return auth

    def logout(self) -> None:
        self.storage.remove_item(utils.ACCESS_TOKEN_KEY, utils.REFRESH_TOKEN_KEY, utils.USER_KEY)
        self.access_token = None
        self.user = None

    def refresh_user(self) -> Optional[UserResponse]:
        token = self.access_token or self.storage.get_item(utils.ACCESS_TOKEN_KEY)
        if not token:
            return None
        try:
            current = self.client.get_current_user(token)
        except ApiError as exc:
            logger.warning("failed to refresh user, clearing session: %s", exc)
            self.logout()
            return None
        self.user = current
        self.access_token = token
        self.storage.set_item(utils.USER_KEY, current.model_dump_json(by_alias=True))
        return current


EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")


def _email_error(email: str) -> Optional[str]:
    if not email:
        return "Email is required."
    if not EMAIL_PATTERN.match(email):
        return "Please enter a valid email address."
    return None


def validate_login_form(form: LoginForm) -> Tuple[Dict[str, str], Optional[LoginPayload]]:
    errors: Dict[str, str] = {}
    email = form.email.strip()
    email_error = _email_error(email)
    if email_error:
        errors["email"] = email_error
    if not form.password:
        errors["password"] = "Password is required."
    if errors:
        return errors, None
    try:
        return {}, LoginPayload(email=email, password=form.password)
    except ValidationError:
        return {"email": "Please enter a valid email address."}, None


def validate_register_form(form: RegisterForm) -> Tuple[Dict[str, str], Optional[RegisterPayload]]:
    errors: Dict[str, str] = {}
    if not form.first_name.strip():
        errors["firstName"] = "First name is required."
    if not form.last_name.strip():
        errors["lastName"] = "Last name is required."
    email = form.email.strip()
    email_error = _email_error(email)
    if email_error:
        errors["email"] = email_error
    if not form.password:
        errors["password"] = "Password is required."
    elif len(form.password) < 8:
        errors["password"] = "Password must be at least 8 characters."
    if not form.confirm_password:
        errors["confirmPassword"] = "Please confirm your password."
    elif form.confirm_password != form.password:
        errors["confirmPassword"] = "Passwords do not match."
    if errors:
        return errors, None
    try:
        payload = RegisterPayload(
            first_name=form.first_name.strip(),
            last_name=form.last_name.strip(),
            email=email,
            phone=form.phone.strip() or None,
            password=form.password,
            confirm_password=form.confirm_password,
        )
    except ValidationError:
        return {"email": "Please enter a valid email address."}, None
    return {}, payload


# ---------- wiring ----------


@dataclass
class Storefront:
    """Every store of one storefront, built in dependency order."""

    storage: LocalStorage
    http: httpx.Client
    client: BackendClient
    country: CountryStore
    auth: AuthStore
    cart: CartStore
    checkout: CheckoutFlow
    applied_coupon: Optional[str] = None
    coupon_error: Optional[str] = None

    def apply_coupon(self, raw: Optional[str]) -> str:
        try:
            code = normalize_coupon(raw)
        except CouponError as exc:
            self.applied_coupon = None
            self.coupon_error = str(exc)
            raise
        self.applied_coupon = code
        self.coupon_error = None
        return code

    def sign_out(self) -> None:
        self.cart.clear_cart()
        self.applied_coupon = None
        self.coupon_error = None
        self.auth.logout()


def build_storefront(
    storage: LocalStorage,
    http: httpx.Client,
    default_country: str = DEFAULT_COUNTRY,
    rates: Optional[Dict[str, float]] = None,
) -> Storefront:
    country = CountryStore(storage, default=default_country, rates=rates)
    client = BackendClient(http)
    auth = AuthStore(storage, client)
    client.token_provider = lambda: auth.access_token
    cart = CartStore(storage)
    return Storefront(
        storage=storage,
        http=http,
        client=client,
        country=country,
        auth=auth,
        cart=cart,
        checkout=CheckoutFlow(cart, country, client),
    )


SESSION_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{16,64}")


class StorefrontSessions:
    """One ``Storefront`` per browser session, each with its own storage file.

    Sessions are identified by an opaque id (the HTTP layer carries it in a
    cookie). Storefronts are kept in memory up to ``max_sessions``; the least
    recently used is dropped first and rebuilt from its file when its
    session comes back. Live exchange rates are shared by every session.
    """

    def __init__(self, storage_dir, http: httpx.Client, default_country: str = DEFAULT_COUNTRY, max_sessions: int = 1000):
        self.storage_dir = Path(storage_dir)
        self.http = http
        self.default_country = default_country
        self.max_sessions = max(1, max_sessions)
        self.rates: Dict[str, float] = {}
        self._rates_requested = False
        self._sessions: "OrderedDict[str, Storefront]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(24)

    @staticmethod
    def is_valid_session_id(session_id: Optional[str]) -> bool:
        # ids become file names, nothing outside the pattern gets near the disk
        return bool(session_id) and SESSION_ID_PATTERN.fullmatch(session_id) is not None

    def storage_for(self, session_id: str) -> LocalStorage:
        if not self.is_valid_session_id(session_id):
            raise ValueError(f"invalid session id: {session_id!r}")
        return LocalStorage(self.storage_dir / f"{session_id}.json")

    def get(self, session_id: str) -> Storefront:
        with self._lock:
            sf = self._sessions.get(session_id)
            if sf is not None:
                self._sessions.move_to_end(session_id)
                return sf
            sf = build_storefront(self.storage_for(session_id), self.http, self.default_country, rates=self.rates)
            self._sessions[session_id] = sf
            while len(self._sessions) > self.max_sessions:
                dropped, _ = self._sessions.popitem(last=False)
                logger.debug("session %s evicted from memory", dropped[:6])
            return sf

    def __len__(self) -> int:
        return len(self._sessions)

    def refresh_rates(self, url: str, timeout: float = 10.0) -> bool:
        """Fetch live conversion rates once per process, see ``CountryStore.refresh_rates``."""
        if self._rates_requested:
            return False
        self._rates_requested = True
        rates = fetch_live_rates(self.http, url, timeout)
        if rates is None:
            return False
        self.rates.update(rates_by_country(rates))
        logger.info("live exchange rates loaded for %s", ", ".join(sorted(self.rates)) or "no countries")
        return True
