"""Product catalog: DTO mapping and the menu's search/filter/sort/paging."""

import math
from typing import List, Optional

from models import Product, ProductDto

DEFAULT_IMAGE_URL = "/images/brownie.png"
PAGE_SIZE = 8

SORT_OPTIONS = ("default", "price-asc", "rating-desc")

CATEGORIES = (
    "Canned Ice Cream",
    "Frozen Yogurt",
    "Ice Cream Cakes",
    "Milkshakes",
    "Popsicles",
    "Sundaes",
)

# backend categoryId (home page links) -> category name used by the filter
CATEGORY_ID_TO_FILTER = {str(i): name for i, name in enumerate(CATEGORIES, start=1)}


def map_product_dto(dto: ProductDto) -> Product:
    return Product(
        id=dto.id,
        name=dto.name,
        description=dto.description or "",
        price=dto.base_price,
        image_url=dto.image_url or DEFAULT_IMAGE_URL,
        rating=float(dto.rating) if dto.rating is not None else 0.0,
        category=dto.category_name or "Other",
        available=dto.is_active if dto.is_active is not None else True,
    )


def fetch_store_products(client) -> List[Product]:
    return [map_product_dto(dto) for dto in client.fetch_products()]


def _parse_price(value: Optional[str]) -> Optional[float]:
    if value is None or str(value).strip() == "":
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return None if math.isnan(parsed) else parsed


def filter_products(
    products: List[Product],
    search: str = "",
    category: str = "all",
    min_price: Optional[str] = None,
    max_price: Optional[str] = None,
    sort: str = "default",
) -> List[Product]:
    result = list(products)

    q = (search or "").strip().lower()
    if q:
        result = [p for p in result if q in p.name.lower() or q in p.description.lower()]

    if category and category != "all":
        result = [p for p in result if p.category == category]

    low = _parse_price(min_price)
    if low is not None:
        result = [p for p in result if p.price >= low]
    high = _parse_price(max_price)
    if high is not None:
        result = [p for p in result if p.price <= high]

    if sort == "price-asc":
        result.sort(key=lambda p: p.price)
    elif sort == "rating-desc":
        result.sort(key=lambda p: p.rating, reverse=True)
    return result


def paginate(products: List[Product], page: int = 1, page_size: int = PAGE_SIZE) -> dict:
    total = len(products)
    page_count = 1 if total == 0 else math.ceil(total / page_size)
    page = min(max(page, 1), page_count)
    start = (page - 1) * page_size
    return {
        "page": page,
        "page_count": page_count,
        "total_results": total,
        "products": products[start:start + page_size],
    }
