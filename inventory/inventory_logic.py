from datetime import datetime, timezone
from typing import Iterable, Optional

from msgspec import Struct, structs
from redis import RedisError

from common.db.processed_events import ProcessedEventLedger
from common.db.redis_db import RedisDB
from common.errors import Result, ServiceError, database_error, insufficient_inventory, product_not_found
from common.kafka.envelope import (InventoryStatusPayload, InventoryStatusUpdated, LineItem, OrderCancelled,
                                   OrderCreated, new_event)
from common.kafka.events_config import *

RESERVED = "RESERVED"
RELEASED = "RELEASED"
# the cancellation arrived before the order was ever reserved
CANCELLED_UNRESERVED = "CANCELLED"


class InventoryValue(Struct, rename="camel", omit_defaults=True):
    product_id: str
    quantity: int
    name: Optional[str] = None
    updated_at: Optional[str] = None


class Reservation(Struct, rename="camel"):
    order_id: str
    products: list[LineItem]
    status: str


class InventoryResult(Struct):
    status: str
    reason: Optional[str] = None
    # inventory.status.updated carrying this result
    event: Optional[InventoryStatusUpdated] = None

    @property
    def success(self) -> bool:
        return self.status == INVENTORY_SUCCESS


class SeedProduct(Struct, rename="camel"):
    product_id: str
    quantity: int
    name: Optional[str] = None


DEFAULT_PRODUCTS = [
    SeedProduct(product_id="prod1", quantity=100, name="Laptop"),
    SeedProduct(product_id="prod2", quantity=50, name="Mouse"),
    SeedProduct(product_id="prod3", quantity=200, name="Keyboard"),
    SeedProduct(product_id="prod4", quantity=75, name="Monitor"),
    SeedProduct(product_id="prod5", quantity=25, name="Headphones"),
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def merge_line_items(items: Iterable[LineItem]) -> list[LineItem]:
    """Sum quantities of repeated products, keeping first-seen order."""
    merged: dict[str, int] = {}
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return [LineItem(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def _shortfall(item: LineItem, record: Optional[InventoryValue]) -> Optional[ServiceError]:
    if record is None:
        return product_not_found(item.product_id)
    if record.quantity < item.quantity:
        return insufficient_inventory(item.product_id, item.quantity, record.quantity)
    return None


class InventoryLogic:
    """Per-product stock. An order's line items, its reservation and the record of
    the event that caused them are written in one transaction."""

    def __init__(self, logger, db: RedisDB, ledger: ProcessedEventLedger, source: str = INVENTORY_SERVICE):
        self.logger = logger
        self.db = db
        self.ledger = ledger
        self.source = source

    def product_key(self, product_id: str) -> str:
        return self.db.key("inventory", product_id)

    def reservation_key(self, order_id: str) -> str:
        return self.db.key("reservation", order_id)

    def product_docs(self, items: list[LineItem]) -> dict[str, type]:
        return {self.product_key(item.product_id): InventoryValue for item in items}

    def taken(self, items: list[LineItem], current: dict) -> dict[str, InventoryValue]:
        """Records with ``items`` taken out. Raises if any item falls short."""
        writes = {}
        for item in items:
            key = self.product_key(item.product_id)
            err = _shortfall(item, current[key])
            if err:
                raise err
            writes[key] = structs.replace(current[key], quantity=current[key].quantity - item.quantity,
                                          updated_at=_now())
        return writes

    def put_back(self, items: list[LineItem], current: dict) -> dict[str, InventoryValue]:
        writes = {}
        for item in items:
            key = self.product_key(item.product_id)
            record = current[key]
            if record is None:
                writes[key] = InventoryValue(product_id=item.product_id, quantity=item.quantity, updated_at=_now())
            else:
                writes[key] = structs.replace(record, quantity=record.quantity + item.quantity, updated_at=_now())
        return writes

    async def get_record(self, product_id: str) -> Result[Optional[InventoryValue]]:
        try:
            return await self.db.get(self.product_key(product_id), InventoryValue), None
        except RedisError as e:
            self.logger.error(f"Error getting inventory for {product_id}: {e}")
            return None, database_error("Failed to get inventory", productId=product_id)

    async def get_inventory(self, product_id: str) -> Result[int]:
        record, err = await self.get_record(product_id)
        if err:
            return 0, err
        return (record.quantity if record else 0), None

    async def check_availability(self, items: list[LineItem]) -> Result[bool]:
        for item in merge_line_items(items):
            record, err = await self.get_record(item.product_id)
            if err:
                return False, err
            err = _shortfall(item, record)
            if err:
                return False, err
        return True, None

    async def deduct(self, items: list[LineItem]) -> Result[list[LineItem]]:
        """Decrement every item in one transaction, never below zero.

        The records are re-checked inside the transaction, so stock taken by
        another order since an availability check fails the whole deduction and
        nothing is decremented.
        """
        items = merge_line_items(items)
        if not items:
            return [], None
        try:
            await self.db.update_many(self.product_docs(items), lambda current: (self.taken(items, current), {}))
        except ServiceError as e:
            return [], e
        except RedisError as e:
            self.logger.error(f"Error deducting inventory: {e}")
            return [], database_error("Failed to deduct inventory")
        return items, None

    async def restock(self, items: list[LineItem]) -> Result[list[InventoryValue]]:
        items = merge_line_items(items)
        if not items:
            return [], None
        try:
            records = await self.db.update_many(self.product_docs(items),
                                                lambda current: (self.put_back(items, current), {}))
        except RedisError as e:
            self.logger.error(f"Error restocking inventory: {e}")
            return [], database_error("Failed to restock inventory")
        return [records[self.product_key(item.product_id)] for item in items], None

    async def add_inventory(self, product_id: str, quantity: int, name: Optional[str] = None) -> Result[InventoryValue]:
        records, err = await self.restock([LineItem(product_id=product_id, quantity=quantity)])
        if err:
            return None, err
        record = records[0]
        if name and record.name != name:

            def rename(current: Optional[InventoryValue]):
                return structs.replace(current, name=name), {}

            try:
                record, _ = await self.db.update(self.product_key(product_id), InventoryValue, rename)
            except RedisError:
                return None, database_error("Failed to name product", productId=product_id)
        return record, None

    def status_event(self, order_id: str, status: str, reason: Optional[str]) -> InventoryStatusUpdated:
        return new_event(
            EVENT_INVENTORY_STATUS_UPDATED,
            InventoryStatusPayload(order_id=order_id, status=status, reason=reason),
            self.source,
        )

    async def process_order_created(self, event: OrderCreated) -> Result[InventoryResult]:
        """Check every line item, then deduct all of them, or none.

        The decremented records, the reservation and the processed-event record
        carrying the outcome are committed together, so a failed write leaves
        nothing behind for a redelivery to trip over. Domain failures become a
        FAILURE result; only store failures come back as errors.
        """
        order_id = event.payload.order_id
        items = merge_line_items(event.payload.products)
        reservation_key = self.reservation_key(order_id)
        outcome: dict[str, InventoryResult] = {}

        def mutate(current: dict):
            reservation = current[reservation_key]
            writes = {}
            if reservation is not None and reservation.status == CANCELLED_UNRESERVED:
                status, reason = INVENTORY_FAILURE, f"Order {order_id} was cancelled"
            else:
                try:
                    writes = self.taken(items, current)
                except ServiceError as e:
                    status, reason = INVENTORY_FAILURE, e.message
                else:
                    status, reason = INVENTORY_SUCCESS, None
                    writes[reservation_key] = Reservation(order_id=order_id, products=items, status=RESERVED)
            status_event = self.status_event(order_id, status, reason)
            outcome["result"] = InventoryResult(status=status, reason=reason, event=status_event)
            return writes, self.ledger.record_for(event.event_id, status_event)

        try:
            await self.db.update_many({reservation_key: Reservation, **self.product_docs(items)}, mutate)
        except RedisError as e:
            self.logger.error(f"Error recording inventory outcome for order {order_id}: {e}")
            return None, database_error("Failed to record inventory outcome", orderId=order_id)

        result = outcome["result"]
        if not result.success:
            self.logger.info(f"Inventory check failed for order {order_id}: {result.reason}")
        return result, None

    async def process_order_cancelled(self, event: OrderCancelled) -> Result[list[LineItem]]:
        """Put back what was reserved for the order, at most once.

        The restock, the released reservation and the processed-event record are
        committed together. A cancellation for an order that was never reserved
        leaves a marker so a late order.created for it is refused instead of
        deducted.
        """
        order_id = event.payload.order_id
        reservation_key = self.reservation_key(order_id)
        record = self.ledger.record_for(event.event_id)

        while True:
            try:
                seen = await self.db.get(reservation_key, Reservation)
            except RedisError:
                return [], database_error("Failed to release reservation", orderId=order_id)
            reserved = seen.products if seen is not None and seen.status == RESERVED else []
            stale = []

            def mutate(current: dict):
                reservation = current[reservation_key]
                if reservation != seen:
                    # changed since it was read; the product keys to watch may differ
                    stale.append(reservation)
                    return {}, {}
                if reservation is None:
                    return {reservation_key: Reservation(order_id=order_id, products=[],
                                                         status=CANCELLED_UNRESERVED)}, record
                if reservation.status != RESERVED:
                    return {}, record
                writes = self.put_back(reserved, current)
                writes[reservation_key] = structs.replace(reservation, status=RELEASED)
                return writes, record

            try:
                await self.db.update_many({reservation_key: Reservation, **self.product_docs(reserved)}, mutate)
            except RedisError:
                return [], database_error("Failed to release reservation", orderId=order_id)
            if not stale:
                break

        if not reserved:
            self.logger.info(f"Nothing reserved for cancelled order {order_id}")
            return [], None
        self.logger.info(f"Restocked {len(reserved)} products for cancelled order {order_id}")
        return reserved, None

    async def get_summary(self) -> Result[dict]:
        try:
            records = await self.db.scan("inventory:*", InventoryValue)
        except RedisError as e:
            self.logger.error(f"Error getting inventory summary: {e}")
            return {"total": 0, "products": []}, database_error("Failed to get inventory summary")
        records.sort(key=lambda r: r.product_id)
        return {
            "total": sum(r.quantity for r in records),
            "products": [{"productId": r.product_id, "quantity": r.quantity, "name": r.name} for r in records],
        }, None

    async def seed(self, products: list[SeedProduct] = None) -> Result[int]:
        products = DEFAULT_PRODUCTS if products is None else products
        for product in products:
            value = InventoryValue(product_id=product.product_id, quantity=product.quantity,
                                   name=product.name, updated_at=_now())
            try:
                await self.db.set(self.product_key(product.product_id), value)
            except RedisError as e:
                self.logger.error(f"Error seeding inventory: {e}")
                return 0, database_error("Failed to seed inventory", productId=product.product_id)
            self.logger.info(f"Seeded product {product.product_id}: {product.quantity} units")
        return len(products), None
