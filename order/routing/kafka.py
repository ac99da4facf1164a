from typing import Optional

from common.db.processed_events import ProcessedEventLedger
from common.kafka.connection import BrokerConnection
from common.kafka.envelope import (InventoryStatusUpdated, OrderCancelled, OrderCancelledPayload, OrderCreated,
                                   OrderCreatedPayload)
from common.kafka.events_config import *
from common.kafka.kafkaConsumer import KafkaConsumerRunner
from common.kafka.kafkaProducer import KafkaPublisher
from order.order_logic import OrderLogic, OrderValue


class OrderKafka:
    def __init__(self, logger, logic: OrderLogic, broker: BrokerConnection,
                 publisher: KafkaPublisher, ledger: ProcessedEventLedger) -> None:
        self.logger = logger
        self.logic = logic
        self.broker = broker
        self.publisher = publisher
        self.ledger = ledger
        self.runner: Optional[KafkaConsumerRunner] = None

    @property
    def handlers(self):
        return {EVENT_INVENTORY_STATUS_UPDATED: self.handle_inventory_status_updated}

    @property
    def running(self) -> bool:
        return self.runner is not None and self.runner.running

    async def handle_inventory_status_updated(self, event: InventoryStatusUpdated):
        self.logger.info(f"[v] Received inventory.status.updated for order {event.payload.order_id}")
        transition, err = await self.logic.apply_inventory_outcome(event)

        if err:
            if err.is_infrastructure:
                raise err
            self.logger.error(f"Failed to update order status: {err.message}")
            return

        if transition.event is not None:
            await self.publisher.publish(EVENT_ORDER_STATUS_UPDATED, transition.event)

    async def publish_order_created(self, order: OrderValue) -> OrderCreated:
        payload = OrderCreatedPayload(
            order_id=order.id,
            user_id=order.user_id,
            products=order.products,
            total_price=order.total_price,
        )
        return await self.publisher.emit(EVENT_ORDER_CREATED, payload)

    async def publish_order_cancelled(self, order: OrderValue) -> OrderCancelled:
        payload = OrderCancelledPayload(order_id=order.id, products=order.products)
        return await self.publisher.emit(EVENT_ORDER_CANCELLED, payload)

    async def init(self):
        self.logger.info("Initializing Kafka")
        self.runner = KafkaConsumerRunner(
            self.broker,
            self.broker.topology.queues[0],
            self.handlers,
            self.ledger,
            self.publisher,
        )
        await self.runner.start()

    async def close(self):
        self.logger.info("Closing Kafka")
        if self.runner:
            await self.runner.close()
            self.runner = None
        await self.broker.close()
