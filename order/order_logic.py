import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from msgspec import Struct, structs
from redis import RedisError

from common.db.processed_events import ProcessedEventLedger
from common.db.redis_db import RedisDB
from common.errors import Result, ServiceError, database_error, order_cancellation, order_not_found
from common.kafka.envelope import (InventoryStatusUpdated, LineItem, OrderStatusPayload, OrderStatusUpdated,
                                   new_event)
from common.kafka.events_config import *

ORDER_STATUSES = (ORDER_PENDING, ORDER_CONFIRMED, ORDER_CANCELLED)
TERMINAL_STATUSES = (ORDER_CONFIRMED, ORDER_CANCELLED)


class OrderValue(Struct, rename="camel"):
    id: str
    user_id: str
    products: list[LineItem]
    total_price: float
    status: str = ORDER_PENDING
    created_at: str = ""
    updated_at: str = ""


class OrderTransition(Struct):
    order: Optional[OrderValue]
    transitioned: bool
    # order.status.updated to publish when the order left PENDING
    event: Optional[OrderStatusUpdated] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OrderLogic:
    """The order saga. Orders start PENDING and move once, to CONFIRMED or CANCELLED."""

    def __init__(self, logger, db: RedisDB, ledger: ProcessedEventLedger, source: str = ORDER_SERVICE):
        self.logger = logger
        self.db = db
        self.ledger = ledger
        self.source = source

    def order_key(self, order_id: str) -> str:
        return self.db.key("order", order_id)

    def _all_index(self) -> str:
        return self.db.key("orders")

    def _user_index(self, user_id: str) -> str:
        return self.db.key("orders", "user", user_id)

    async def create_order(self, user_id: str, products: list[LineItem], total_price: float) -> Result[OrderValue]:
        now = _now()
        order = OrderValue(
            id=str(uuid.uuid4()),
            user_id=user_id,
            products=list(products),
            total_price=total_price,
            status=ORDER_PENDING,
            created_at=now,
            updated_at=now,
        )
        score = time.time()
        try:
            await self.db.put(self.order_key(order.id), order, indexes={
                self._all_index(): score,
                self._user_index(user_id): score,
            })
        except RedisError as e:
            self.logger.error(f"Error creating order: {e}")
            return None, database_error("Failed to create order", userId=user_id)
        self.logger.info(f"Order {order.id} created for user {user_id}")
        return order, None

    async def get_order(self, order_id: str) -> Result[OrderValue]:
        try:
            order = await self.db.get(self.order_key(order_id), OrderValue)
        except RedisError as e:
            self.logger.error(f"Error getting order: {e}")
            return None, database_error("Failed to get order", orderId=order_id)
        if order is None:
            return None, order_not_found(order_id)
        return order, None

    async def get_orders(self, status: Optional[str] = None) -> Result[list[OrderValue]]:
        orders, err = await self._orders_from_index(self._all_index())
        if err:
            return [], err
        if status:
            orders = [o for o in orders if o.status == status]
        return orders, None

    async def get_orders_by_user(self, user_id: str) -> Result[list[OrderValue]]:
        return await self._orders_from_index(self._user_index(user_id))

    async def _orders_from_index(self, index_key: str) -> Result[list[OrderValue]]:
        try:
            keys = await self.db.index(index_key)
            return await self.db.get_many(keys, OrderValue), None
        except RedisError as e:
            self.logger.error(f"Error getting orders: {e}")
            return [], database_error("Failed to get orders")

    async def apply_inventory_outcome(self, event: InventoryStatusUpdated) -> Result[OrderTransition]:
        """Move a PENDING order to CONFIRMED (SUCCESS) or CANCELLED (FAILURE).

        The new status and the processed-event record are committed together. An
        order that already left PENDING is not touched, but the event is still
        recorded so later deliveries are skipped.
        """
        order_id = event.payload.order_id
        new_status = ORDER_CONFIRMED if event.payload.status == INVENTORY_SUCCESS else ORDER_CANCELLED
        emitted: dict[str, OrderStatusUpdated] = {}

        def mutate(order: Optional[OrderValue]):
            emitted.clear()
            if order is None:
                raise order_not_found(order_id)
            if order.status != ORDER_PENDING:
                self.logger.info(f"Order {order_id} is {order.status}, ignoring inventory {event.payload.status}")
                return None, self.ledger.record_for(event.event_id)
            updated = structs.replace(order, status=new_status, updated_at=_now())
            status_event = new_event(
                EVENT_ORDER_STATUS_UPDATED,
                OrderStatusPayload(order_id=order_id, status=new_status, user_id=order.user_id),
                self.source,
            )
            emitted["event"] = status_event
            return updated, self.ledger.record_for(event.event_id, status_event)

        try:
            order, written = await self.db.update(self.order_key(order_id), OrderValue, mutate)
        except ServiceError as err:
            return None, err
        except RedisError as e:
            self.logger.error(f"Error updating order status: {e}")
            return None, database_error("Failed to update order status", orderId=order_id, eventId=event.event_id)

        if written:
            self.logger.info(f"Order {order_id} status updated to {order.status}")
        return OrderTransition(order=order, transitioned=written, event=emitted.get("event") if written else None), None

    async def cancel_order(self, order_id: str, user_id: str) -> Result[OrderValue]:
        """Cancel a PENDING order on behalf of its owner. Cancelling twice is an error."""

        def mutate(order: Optional[OrderValue]):
            if order is None or order.user_id != user_id:
                raise order_not_found(order_id, "Order not found or not authorized")
            if order.status == ORDER_CANCELLED:
                raise order_cancellation(order_id, "Order is already cancelled")
            if order.status == ORDER_CONFIRMED:
                raise order_cancellation(order_id, "Confirmed orders cannot be cancelled")
            return structs.replace(order, status=ORDER_CANCELLED, updated_at=_now()), {}

        try:
            order, _ = await self.db.update(self.order_key(order_id), OrderValue, mutate)
        except ServiceError as err:
            return None, err
        except RedisError as e:
            self.logger.error(f"Error cancelling order: {e}")
            return None, database_error("Failed to cancel order", orderId=order_id)
        self.logger.info(f"Order {order_id} cancelled by user {user_id}")
        return order, None
