from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response

import catalog
import reports
import utils
from api import ApiError
from config import settings
from checkout import (
    DELIVERY_ZONES,
    PICKUP_VENUES,
    TIME_SLOTS,
    CheckoutInProgress,
    CheckoutState,
    InvalidCartError,
    delivery_fee_for,
)
from models import (
    AddToCartRequest,
    CheckoutForm,
    CountryRequest,
    CouponRequest,
    LoginForm,
    RegisterForm,
    RemoveFromCartRequest,
    SetQuantityRequest,
)
from pricing import CouponError, derive_totals, partition_items
from stores import (
    BASE_COUNTRY_CONFIG,
    Storefront,
    UnknownCountryError,
    validate_login_form,
    validate_register_form,
)

router = APIRouter()


SESSION_COOKIE = "icytales_session"
SESSION_MAX_AGE = 60 * 60 * 24 * 30


def get_storefront(request: Request, response: Response) -> Storefront:
    """The caller's own storefront, found through the session cookie.

    A request without a usable cookie starts a new session and the cookie
    is set on the response.
    """
    sessions = request.app.state.sessions
    session_id = request.cookies.get(SESSION_COOKIE)
    if not sessions.is_valid_session_id(session_id):
        session_id = sessions.new_session_id()
        response.set_cookie(
            SESSION_COOKIE,
            session_id,
            max_age=SESSION_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=settings.cookie_secure,
        )
    return sessions.get(session_id)


def _status_for(exc: ApiError) -> int:
    # no usable status means the backend was unreachable or answered garbage
    return exc.status_code if exc.status_code and exc.status_code >= 400 else 502


def _api_failure(exc: ApiError) -> HTTPException:
    return HTTPException(status_code=_status_for(exc), detail=exc.message)


def _cart_view(sf: Storefront, delivery_fee: float = 0.0) -> dict:
    fmt = sf.country.format_price
    config = sf.country.config
    available, _ = partition_items(sf.cart.items)
    totals = derive_totals(sf.cart.items, config.vat_rate, sf.applied_coupon, delivery_fee)

    lines = []
    for item in sf.cart.items:
        product = item.product
        line_total = product.price * item.quantity
        lines.append({
            "product_id": product.id,
            "name": product.name,
            "description": product.description,
            "image_url": product.image_url,
            "available": product.is_available,
            "quantity": item.quantity,
            "unit_price": product.price,
            "line_total": round(line_total, 2),
            "unit_price_display": fmt(product.price),
            "line_total_display": fmt(line_total),
        })

    if not available:
        announcement = "Cart is empty."
    else:
        announcement = (
            f"Cart updated for {config.label}. Subtotal {fmt(totals.subtotal)}, "
            f"discount {fmt(totals.discount)}, VAT {fmt(totals.vat)}, "
            f"grand total {fmt(totals.grand_total)}."
        )

    return {
        "items": lines,
        "item_count": totals.item_count,
        "country": config.code,
        "applied_coupon": sf.applied_coupon,
        "coupon_error": sf.coupon_error,
        "totals": totals.as_dict(),
        "totals_display": {
            "subtotal": fmt(totals.subtotal),
            "discount": fmt(totals.discount),
            "vat": fmt(totals.vat),
            "delivery_fee": fmt(totals.delivery_fee),
            "grand_total": fmt(totals.grand_total),
        },
        "can_checkout": bool(available),
        "announcement": announcement,
    }


# ---------- country ----------


@router.get("/country")
async def get_country(sf: Storefront = Depends(get_storefront)):
    """Active country, its VAT rate and conversion rate, plus the supported codes."""
    return {**sf.country.as_dict(), "supported": list(BASE_COUNTRY_CONFIG)}


@router.put("/country")
async def set_country(payload: CountryRequest, sf: Storefront = Depends(get_storefront)):
    """Switch the active country. Body: {"code": "KAZ"}"""
    try:
        sf.country.set_country(payload.code)
    except UnknownCountryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return sf.country.as_dict()


# ---------- menu ----------


@router.get("/menu")
def menu(
    sf: Storefront = Depends(get_storefront),
    search: str = Query(""),
    category: str = Query("all"),
    category_id: Optional[str] = Query(None, alias="categoryId"),
    min_price: Optional[str] = Query(None, alias="minPrice"),
    max_price: Optional[str] = Query(None, alias="maxPrice"),
    sort: str = Query("default"),
    page: int = Query(1),
):
    """Product listing with search, category, price range, sort and paging.

    `categoryId` (1-6, as linked from the home page) selects the matching
    category and takes precedence over `category`.
    """
    if sort not in catalog.SORT_OPTIONS:
        raise HTTPException(status_code=400, detail=f"sort must be one of {', '.join(catalog.SORT_OPTIONS)}")
    if category_id and category_id in catalog.CATEGORY_ID_TO_FILTER:
        category = catalog.CATEGORY_ID_TO_FILTER[category_id]
        page = 1

    try:
        products = catalog.fetch_store_products(sf.client)
    except ApiError as e:
        raise _api_failure(e)

    filtered = catalog.filter_products(products, search, category, min_price, max_price, sort)
    result = catalog.paginate(filtered, page)
    result["category"] = category
    result["products"] = [
        {**p.model_dump(), "price_display": sf.country.format_price(p.price)}
        for p in result["products"]
    ]
    return result


# ---------- cart ----------


@router.get("/cart")
async def view_cart(sf: Storefront = Depends(get_storefront)):
    """Cart lines with derived totals in base units and in the active currency."""
    return _cart_view(sf)


@router.post("/cart/add")
def add_to_cart(payload: AddToCartRequest, sf: Storefront = Depends(get_storefront)):
    """Add one unit of a catalog product. Body: {"product_id": int}"""
    try:
        products = catalog.fetch_store_products(sf.client)
    except ApiError as e:
        raise _api_failure(e)

    product = next((p for p in products if p.id == payload.product_id), None)
    if not product:
        raise HTTPException(status_code=404, detail="product not found")

    sf.cart.add_to_cart(product)
    return {"success": True, "cart": _cart_view(sf)}


@router.post("/cart/remove")
async def remove_from_cart(payload: RemoveFromCartRequest, sf: Storefront = Depends(get_storefront)):
    """Take one unit off a line; the line goes away at zero."""
    sf.cart.remove_from_cart(payload.product_id)
    return _cart_view(sf)


@router.post("/cart/quantity")
async def set_item_quantity(payload: SetQuantityRequest, sf: Storefront = Depends(get_storefront)):
    sf.cart.set_item_quantity(payload.product_id, payload.quantity)
    return _cart_view(sf)


@router.post("/cart/clear")
async def clear_cart(sf: Storefront = Depends(get_storefront)):
    sf.cart.clear_cart()
    return _cart_view(sf)


@router.post("/cart/coupon")
async def apply_coupon(payload: CouponRequest, sf: Storefront = Depends(get_storefront)):
    """Apply a coupon code (case and surrounding spaces ignored)."""
    try:
        sf.apply_coupon(payload.code)
    except CouponError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _cart_view(sf)


# ---------- checkout ----------


@router.get("/checkout/options")
async def checkout_options():
    return {
        "time_slots": [{"id": s.id, "label": s.label, "available": s.available} for s in TIME_SLOTS],
        "pickup_venues": [{"id": k, "label": v} for k, v in PICKUP_VENUES.items()],
        "delivery_zones": [{"id": z.id, "label": z.label, "fee": z.fee} for z in DELIVERY_ZONES.values()],
    }


@router.post("/checkout/preview")
async def checkout_preview(form: CheckoutForm = Body(...), sf: Storefront = Depends(get_storefront)):
    """Cart totals including the delivery fee of the selected zone."""
    return _cart_view(sf, delivery_fee=delivery_fee_for(form))


@router.post("/checkout")
def checkout(form: CheckoutForm = Body(...), sf: Storefront = Depends(get_storefront)):
    """Validate the checkout form and place the order with the backend.

    All field problems are reported together with status 400. A cart holding
    a product without a numeric id is refused with 409 and must be cleared.
    Backend failures keep the backend's message. On success the cart and the
    applied coupon are cleared.
    """
    try:
        state = sf.checkout.submit(form, sf.applied_coupon)
    except CheckoutInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidCartError as e:
        raise HTTPException(status_code=409, detail=e.message)

    if state is CheckoutState.IDLE:
        raise HTTPException(status_code=400, detail={"message": sf.checkout.message, "errors": sf.checkout.errors})
    if state is CheckoutState.ERROR:
        raise HTTPException(status_code=sf.checkout.error_status, detail=sf.checkout.message)

    sf.applied_coupon = None
    sf.coupon_error = None
    return {**sf.checkout.as_dict(), "redirect": "/thank-you"}


# ---------- auth ----------


def _session(sf: Storefront) -> dict:
    expires_at = sf.auth.token_expires_at
    return {
        "is_authenticated": sf.auth.is_authenticated,
        "user": sf.auth.user.to_json_dict() if sf.auth.user else None,
        "token_expires_at": expires_at.isoformat() if expires_at else None,
    }


@router.post("/auth/login")
def login(form: LoginForm, sf: Storefront = Depends(get_storefront)):
    """Login with {"email": "...", "password": "..."}.

    Field problems come back as 400 `{"errors": {...}}`; a rejected login
    keeps the backend message under `errors.general`.
    """
    errors, payload = validate_login_form(form)
    if errors:
        raise HTTPException(status_code=400, detail={"errors": errors})
    try:
        sf.auth.login(payload)
    except ApiError as e:
        raise HTTPException(status_code=_status_for(e), detail={"errors": {"general": e.message}})
    return _session(sf)


@router.post("/auth/register")
def register(form: RegisterForm, sf: Storefront = Depends(get_storefront)):
    errors, payload = validate_register_form(form)
    if errors:
        raise HTTPException(status_code=400, detail={"errors": errors})
    try:
        sf.auth.register(payload)
    except ApiError as e:
        raise HTTPException(status_code=_status_for(e), detail={"errors": {"general": e.message}})
    return _session(sf)


@router.post("/auth/logout")
async def logout(sf: Storefront = Depends(get_storefront)):
    """Drop the session and the cart. No backend call is needed."""
    sf.sign_out()
    return _session(sf)


@router.post("/auth/refresh")
def refresh_user(sf: Storefront = Depends(get_storefront)):
    """Re-read the profile from the backend; a rejected token ends the session."""
    utils.require_session(sf.auth)
    if sf.auth.refresh_user() is None:
        raise HTTPException(status_code=401, detail="session expired")
    return _session(sf)


@router.get("/auth/session")
async def session(sf: Storefront = Depends(get_storefront)):
    return _session(sf)


# ---------- orders ----------


@router.get("/orders")
def my_orders(sf: Storefront = Depends(get_storefront)):
    """The signed-in customer's past orders, totals in the active currency."""
    utils.require_session(sf.auth)
    try:
        orders = sf.client.get_my_orders()
    except ApiError as e:
        raise _api_failure(e)
    return [
        {**o.model_dump(), "total_display": sf.country.format_price(o.total_amount)}
        for o in orders
    ]


# ---------- reports ----------


def _load_report(sf: Storefront, period: str):
    if period not in reports.PERIODS:
        raise HTTPException(status_code=400, detail=f"period must be one of {', '.join(reports.PERIODS)}")
    utils.require_report_access(sf.auth)
    dates = reports.compute_date_range(period)
    try:
        return sf.client.get_sales_report(dates["from_date"], dates["to_date"])
    except ApiError as e:
        raise _api_failure(e)


@router.get("/reports/sales")
def sales_report(
    sf: Storefront = Depends(get_storefront),
    period: str = Query("year-to-date"),
    group_by: str = Query("region"),
):
    """Sales KPIs and buckets. ADMIN or MANAGER only.

    Query: `period` is last-7, last-30 or year-to-date; `group_by` is region or month.
    """
    if group_by not in ("region", "month"):
        raise HTTPException(status_code=400, detail="group_by must be region or month")
    report = _load_report(sf, period)
    return reports.report_view(report, group_by)


@router.get("/reports/sales.csv")
def sales_report_csv(sf: Storefront = Depends(get_storefront), period: str = Query("year-to-date")):
    report = _load_report(sf, period)
    return Response(
        content=reports.export_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="sales-report-{period}.csv"'},
    )
