"""Purchase verifier abstraction with order-management API and in-memory adapters.

The review service asks two questions of the order history:
- which orders has this shopper placed?
- which products does an order contain?

Adapters raise ``PurchaseVerifierError`` on any failure; the review service
turns that into an "unavailable" verification result.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import httpx

from reviews_ratings.lib.logging import get_logger
from reviews_ratings.lib.settings import settings


logger = get_logger(__name__)


class PurchaseVerifierError(Exception):
    """Order history could not be read."""


class PurchaseVerifier(ABC):
    """Abstract base class for order history lookups."""

    @abstractmethod
    async def list_orders(self, shopper_id: str) -> List[str]:
        """Return the ids of the shopper's orders.

        Raises:
            PurchaseVerifierError: Order history unavailable
        """
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> List[str]:
        """Return the product ids of an order's line items.

        Raises:
            PurchaseVerifierError: Order unavailable
        """
        pass


class InMemoryPurchaseVerifier(PurchaseVerifier):
    """Fixed order book for local development and tests.

    Args:
        orders_by_shopper: shopper id -> list of order ids
        products_by_order: order id -> list of product ids
    """

    def __init__(
        self,
        orders_by_shopper: Optional[Dict[str, List[str]]] = None,
        products_by_order: Optional[Dict[str, List[str]]] = None,
    ):
        self.orders_by_shopper = orders_by_shopper or {}
        self.products_by_order = products_by_order or {}

    def add_order(self, shopper_id: str, order_id: str, product_ids: Iterable[str]) -> None:
        self.orders_by_shopper.setdefault(shopper_id, []).append(order_id)
        self.products_by_order[order_id] = list(product_ids)

    async def list_orders(self, shopper_id: str) -> List[str]:
        return list(self.orders_by_shopper.get(shopper_id, []))

    async def get_order(self, order_id: str) -> List[str]:
        if order_id not in self.products_by_order:
            raise PurchaseVerifierError(f"Order {order_id} not found")
        return list(self.products_by_order[order_id])


class HttpPurchaseVerifier(PurchaseVerifier):
    """
    Order management API client.

    Endpoints:
        GET {base}/orders?q={shopper_id} -> {"list": [{"orderId": ...}, ...]}
        GET {base}/orders/{order_id}     -> {"items": [{"productId": ...}, ...]}
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        app_key: Optional[str] = None,
        app_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        app_key = app_key if app_key is not None else settings.order_api_app_key
        app_token = app_token if app_token is not None else settings.order_api_app_token
        if app_key and app_token:
            headers["X-API-AppKey"] = app_key
            headers["X-API-AppToken"] = app_token

        self.client = httpx.AsyncClient(
            base_url=base_url or settings.order_api_base_url,
            headers=headers,
            timeout=timeout or settings.order_api_timeout_seconds,
            transport=transport,
        )

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Order API request failed: {e}", extra={"path": path})
            raise PurchaseVerifierError(str(e)) from e

    @staticmethod
    def _entries(payload: Any, key: str, path: str) -> List[dict]:
        """Entries listed under ``key``; a missing key means none."""
        entries = payload.get(key, []) if isinstance(payload, dict) else None
        if not isinstance(entries, list) or not all(isinstance(entry, dict) for entry in entries):
            logger.warning(
                f"Order API returned a malformed '{key}' payload",
                extra={"path": path},
            )
            raise PurchaseVerifierError(f"Malformed order API response: expected a '{key}' list")
        return entries

    async def list_orders(self, shopper_id: str) -> List[str]:
        payload = await self._get_json("/orders", params={"q": shopper_id})
        orders = self._entries(payload, "list", "/orders")
        return [order["orderId"] for order in orders if order.get("orderId")]

    async def get_order(self, order_id: str) -> List[str]:
        path = f"/orders/{order_id}"
        payload = await self._get_json(path)
        items = self._entries(payload, "items", path)
        return [item["productId"] for item in items if item.get("productId")]

    async def aclose(self) -> None:
        await self.client.aclose()
