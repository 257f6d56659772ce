"""
Order placement, status transitions and order retrieval.

Stock for each line item is taken with the Product Store's atomic reserve(),
never with a separate read and write. If anything fails after the first
reservation, including persisting the order itself, every reservation made so
far is released before the error propagates, so callers only ever observe a
committed order with its stock taken, or no order and no stock change.
"""

import logging
import secrets
import string
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from database import Database, utcnow
from errors import Conflict, Forbidden, InvalidStatus, NotFound
from schemas import (
    ORDER_STATUSES,
    PAYMENT_STATUSES,
    Order,
    OrderItem,
    Requester,
    ShippingAddress,
    StatusUpdate,
    parse_place_order,
)

logger = logging.getLogger(__name__)

ORDER_ID_ALPHABET = string.digits + string.ascii_uppercase
MAX_ORDER_ID_ATTEMPTS = 5
RECENT_ORDERS_LIMIT = 10


def generate_order_id() -> str:
    """ORD + epoch milliseconds + 9 random base36 characters."""
    suffix = "".join(secrets.choice(ORDER_ID_ALPHABET) for _ in range(9))
    return f"ORD{int(time.time() * 1000)}{suffix}"


def order_total(lines: List[OrderItem]) -> float:
    total = sum((Decimal(str(line.price)) * line.quantity for line in lines), Decimal("0"))
    return float(total)


def require_admin(requester: Requester, action: str = "perform this action"):
    if not requester.is_admin:
        raise Forbidden(f"Admin access required to {action}")


def can_access(requester: Requester, user_id: str) -> bool:
    return requester.is_admin or requester.id == user_id


class OrderService:
    def __init__(self, database: Database, id_factory=generate_order_id,
                 max_id_attempts: int = MAX_ORDER_ID_ATTEMPTS):
        self.database = database
        self.id_factory = id_factory
        self.max_id_attempts = max_id_attempts

    @property
    def products(self):
        return self.database.products

    @property
    def orders(self):
        return self.database.orders

    # --- placement ---

    def place_order(self, requester: Requester, payload: Any) -> Dict[str, Any]:
        """Reserve stock for every line, then persist the order.

        Raises InvalidInput, NotFound, InsufficientStock or Conflict. On any
        failure the stock already reserved is released.
        """
        request = parse_place_order(payload)
        reserved: List[Tuple[str, int]] = []
        try:
            lines = []
            for item in request.products:
                product = self.products.reserve(item.productId, item.quantity)
                reserved.append((item.productId, item.quantity))
                lines.append(
                    OrderItem(productId=item.productId, quantity=item.quantity, price=product["price"])
                )
            order = self._create_order(requester.id, lines, request.shippingAddress)
        except BaseException as e:
            if reserved:
                logger.warning(
                    "Order for user %s failed (%s); releasing %d reservation(s)",
                    requester.id, type(e).__name__, len(reserved),
                )
                self._release(reserved)
            raise

        logger.info(
            "Placed order %s for user %s: %d line(s), total %.2f",
            order["orderId"], requester.id, len(lines), order["totalAmount"],
        )
        return self._populate(order)

    def _create_order(self, user_id: str, lines: List[OrderItem],
                      shipping: ShippingAddress) -> Dict[str, Any]:
        total = order_total(lines)
        order_id = None
        for attempt in range(1, self.max_id_attempts + 1):
            order_id = self.id_factory()
            now = utcnow()
            order = Order(
                orderId=order_id,
                userId=user_id,
                products=lines,
                totalAmount=total,
                shippingAddress=shipping,
                orderStatus="Pending",
                paymentStatus="Completed",  # payment is simulated
                createdAt=now,
                updatedAt=now,
            )
            try:
                return self.orders.create(order)
            except Conflict:
                logger.warning("Order id %s collided (attempt %d)", order_id, attempt)
        raise Conflict(order_id)

    def _release(self, reserved: List[Tuple[str, int]]):
        for product_id, quantity in reversed(reserved):
            try:
                self.products.increment(product_id, quantity)
            except Exception:
                logger.exception("Failed to release %d unit(s) of product %s", quantity, product_id)

    # --- status ---

    def update_status(self, requester: Requester, order_id: str,
                      update: StatusUpdate) -> Dict[str, Any]:
        require_admin(requester, "update order status")
        existing = self.orders.get(order_id)
        if existing is None:
            raise NotFound("Order", order_id)

        patch = {}
        if update.orderStatus is not None:
            if update.orderStatus not in ORDER_STATUSES:
                raise InvalidStatus("orderStatus", update.orderStatus, ORDER_STATUSES)
            patch["orderStatus"] = update.orderStatus
        if update.paymentStatus is not None:
            if update.paymentStatus not in PAYMENT_STATUSES:
                raise InvalidStatus("paymentStatus", update.paymentStatus, PAYMENT_STATUSES)
            patch["paymentStatus"] = update.paymentStatus

        if not patch:
            return self._populate(existing)

        patch["updatedAt"] = utcnow()
        order = self.orders.update(order_id, patch)
        logger.info("Order %s status updated: %s", order_id,
                    {k: v for k, v in patch.items() if k != "updatedAt"})
        return self._populate(order)

    # --- retrieval ---

    def get_order(self, requester: Requester, order_id: str) -> Dict[str, Any]:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order", order_id)
        if not can_access(requester, order["userId"]):
            raise Forbidden()
        return self._populate(order)

    def list_orders_for_user(self, requester: Requester, user_id: str) -> List[Dict[str, Any]]:
        if not can_access(requester, user_id):
            raise Forbidden()
        return self._populate_many(self.orders.find_by_user(user_id))

    def list_all_orders(self, requester: Requester) -> List[Dict[str, Any]]:
        require_admin(requester, "list all orders")
        return self._populate_many(self.orders.find_all())

    def dashboard(self, requester: Requester) -> Dict[str, Any]:
        require_admin(requester, "view the dashboard")
        return {
            "stats": {
                "totalProducts": self.products.count(),
                "totalOrders": self.orders.count(),
                "totalRevenue": round(self.orders.revenue(), 2),
                "pendingOrders": self.orders.count({"orderStatus": "Pending"}),
            },
            "recentOrders": self._populate_many(self.orders.find_all(limit=RECENT_ORDERS_LIMIT)),
        }

    # --- display ---

    def _populate(self, order: Dict[str, Any]) -> Dict[str, Any]:
        return self._populate_many([order])[0]

    def _populate_many(self, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ids = {line["productId"] for order in orders for line in order["products"]}
        catalog = self.products.get_many(ids) if ids else {}
        for order in orders:
            for line in order["products"]:
                line["product"] = _display(catalog.get(line["productId"]))
        return orders


def _display(product: Optional[dict]) -> Optional[dict]:
    if product is None:
        return None
    return {"id": product["id"], "name": product["name"], "images": product.get("images", [])}
