"""Thin HTTP client the storefront checkout uses to talk to the API."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class StorefrontAPIError(Exception):
    """An error response from the API, classified into the payment error kinds."""

    def __init__(
        self,
        status_code: Optional[int],
        message: str,
        field_errors: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.field_errors = field_errors or {}

    @property
    def kind(self) -> str:
        if self.status_code is None:
            return "NetworkError"
        if self.status_code == 400 and self.field_errors.get("amount") == "mismatch":
            return "AmountMismatch"
        return {
            401: "Unauthenticated",
            403: "Forbidden",
            404: "OrderNotFound",
            409: "OrderNotPayable",
            502: "ProviderError",
            503: "ProviderError",
        }.get(self.status_code, "HTTPError")

    @property
    def is_transient(self) -> bool:
        return self.status_code is None or self.status_code >= 500


def _error_from_response(r: httpx.Response) -> StorefrontAPIError:
    message = r.reason_phrase or "Request failed"
    field_errors: Dict[str, str] = {}
    try:
        detail = r.json().get("detail")
    except (ValueError, AttributeError):
        detail = None
    if isinstance(detail, dict):
        message = str(detail.get("message") or message)
        if isinstance(detail.get("field_errors"), dict):
            field_errors = {str(k): str(v) for k, v in detail["field_errors"].items()}
    elif isinstance(detail, str):
        message = detail
    return StorefrontAPIError(r.status_code, message, field_errors)


class StorefrontAPI:
    """Wraps an ``httpx.Client`` pointed at the marketplace API.

    Any ``httpx.Client`` works, including FastAPI's ``TestClient``.
    """

    def __init__(
        self,
        client: httpx.Client,
        token: Optional[str] = None,
        api_prefix: str = "/api/v1",
    ) -> None:
        self.client = client
        self.token = token
        self.api_prefix = api_prefix

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            r = self.client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TransportError as exc:
            logger.warning("Storefront %s %s failed: %s", method, path, exc)
            raise StorefrontAPIError(None, f"Network error: {exc}") from exc
        if r.status_code >= 400:
            raise _error_from_response(r)
        return r.json()

    def login(self, email: str, password: str) -> str:
        data = self._request(
            "POST", "/auth/login", data={"username": email, "password": password}
        )
        self.token = data["access_token"]
        return self.token

    def create_order(self, items: List[Dict[str, Any]], payment_method: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"{self.api_prefix}/orders/",
            json={"items": items, "payment_method": payment_method},
        )

    def initiate_payment(
        self,
        provider: str,
        order_id: str,
        amount: Decimal,
        description: str = "",
        buyer_email: Optional[str] = None,
        buyer_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "orderId": order_id,
            "amount": str(amount),
            "description": description,
        }
        if buyer_email:
            body["buyerEmail"] = buyer_email
        if buyer_name:
            body["buyerName"] = buyer_name
        if metadata:
            body["metadata"] = metadata
        return self._request("POST", f"{self.api_prefix}/payments/{provider}/initiate", json=body)

    def get_order_status(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"{self.api_prefix}/orders/{order_id}/status")

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"{self.api_prefix}/orders/{order_id}")
