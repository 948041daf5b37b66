"""Thin wrappers around the shop backend REST API.

All requests go through one ``httpx.Client`` whose ``base_url`` points at the
backend. Failures are raised as :class:`ApiError` carrying the message the UI
should show.
"""

import logging
import time
from typing import Any, Callable, List, Optional

import httpx
from pydantic import ValidationError

from models import (
    ApiOrder,
    AuthResponse,
    CreateOrderRequest,
    LoginPayload,
    ProductDto,
    RegisterPayload,
    SalesReportResponse,
    UserResponse,
)

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


def _error_message(response: httpx.Response) -> str:
    message = f"Request failed with status {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        return message
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return message


def fetch_json(
    http: httpx.Client,
    method: str,
    url: str,
    *,
    timeout: float = 10.0,
    retries: int = 0,
    retry_delay: float = 0.5,
    **kwargs: Any,
) -> Any:
    """Generic JSON request with a timeout and optional retries.

    Only transport failures (connection refused, reset, ...) are retried.
    Timeouts and HTTP error statuses are raised immediately. An empty body
    yields ``None``.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            response = http.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as exc:
            raise ApiError(f"Request timed out after {timeout}s") from exc
        except httpx.TransportError as exc:
            if attempt > retries:
                raise ApiError(f"Network error: {exc}") from exc
            logger.info("retrying %s %s after network error (attempt %d)", method, url, attempt)
            time.sleep(retry_delay)
            continue

        if response.is_error:
            raise ApiError(
                f"Request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"Invalid JSON response from {url}", status_code=response.status_code) from exc


class BackendClient:
    """Calls the backend on behalf of the storefront.

    ``token_provider`` returns the stored access token (or None); it is read
    on every authenticated call so a logout takes effect immediately.
    """

    def __init__(self, http: httpx.Client, token_provider: Optional[Callable[[], Optional[str]]] = None):
        self.http = http
        self.token_provider = token_provider or (lambda: None)

    # -- transport ---------------------------------------------------------

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self.http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError(f"Network error: {exc}") from exc

    def _envelope(self, method: str, path: str, headers: Optional[dict] = None, **kwargs: Any) -> Any:
        """Auth endpoints wrap their payload as ``{success, message, data}``."""
        response = self._send(method, path, headers={"Content-Type": "application/json", **(headers or {})}, **kwargs)
        try:
            payload = response.json()
        except ValueError:
            raise ApiError(f"Invalid JSON response from {path}", status_code=response.status_code)
        if not isinstance(payload, dict):
            raise ApiError(f"Invalid JSON response from {path}", status_code=response.status_code)

        if response.is_error or not payload.get("success"):
            message = payload.get("message") or f"Request failed with status {response.status_code}"
            raise ApiError(message, status_code=response.status_code)
        if not payload.get("data"):
            raise ApiError("Empty response from server", status_code=response.status_code)
        return payload["data"]

    def _auth_fetch(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        response = self._send(method, path, headers=headers, **kwargs)
        if response.is_error:
            raise ApiError(_error_message(response), status_code=response.status_code)
        try:
            return response.json()
        except ValueError:
            raise ApiError(f"Invalid JSON response from {path}", status_code=response.status_code)

    # -- auth --------------------------------------------------------------

    def register_user(self, payload: RegisterPayload) -> AuthResponse:
        data = self._envelope("POST", "/api/auth/register", json=payload.to_json_dict())
        return self._parse(AuthResponse, data)

    def login_user(self, payload: LoginPayload) -> AuthResponse:
        data = self._envelope("POST", "/api/auth/login", json=payload.to_json_dict())
        return self._parse(AuthResponse, data)

    def get_current_user(self, access_token: str) -> UserResponse:
        data = self._envelope("GET", "/api/auth/me", headers={"Authorization": f"Bearer {access_token}"})
        return self._parse(UserResponse, data)

    # -- catalog -----------------------------------------------------------

    def fetch_products(self) -> List[ProductDto]:
        response = self._send("GET", "/api/products", headers={"Content-Type": "application/json"})
        if response.is_error:
            raise ApiError(response.text or "Failed to fetch products", status_code=response.status_code)
        try:
            payload = response.json()
        except ValueError:
            raise ApiError("Invalid JSON response from /api/products", status_code=response.status_code)
        if not isinstance(payload, list):
            raise ApiError("Unexpected product list from server", status_code=response.status_code)

        products = []
        for raw in payload:
            try:
                products.append(ProductDto.model_validate(raw))
            except ValidationError:
                logger.warning("skipping malformed product from backend: %r", raw)
        return products

    # -- orders ------------------------------------------------------------

    def create_order(self, request: CreateOrderRequest) -> dict:
        """POST /api/orders. Returns the raw ``{success, message, data}`` reply."""
        return self._auth_fetch("POST", "/api/orders", json=request.to_json_dict())

    def get_my_orders(self) -> List[ApiOrder]:
        payload = self._auth_fetch("GET", "/api/orders/my")
        data = payload.get("data") if isinstance(payload, dict) else None
        return [self._parse(ApiOrder, raw) for raw in data or []]

    # -- reports -----------------------------------------------------------

    def get_sales_report(self, from_date: Optional[str] = None, to_date: Optional[str] = None) -> SalesReportResponse:
        params = {}
        if from_date:
            params["fromDate"] = from_date
        if to_date:
            params["toDate"] = to_date
        payload = self._auth_fetch("GET", "/api/reports/sales", params=params)
        return self._parse(SalesReportResponse, payload)

    @staticmethod
    def _parse(model, data):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise ApiError(f"Unexpected response from server: {exc.error_count()} invalid field(s)") from exc
