from typing import Optional

from common.db.processed_events import ProcessedEventLedger
from common.kafka.connection import BrokerConnection
from common.kafka.envelope import OrderCancelled, OrderCreated
from common.kafka.events_config import *
from common.kafka.kafkaConsumer import KafkaConsumerRunner
from common.kafka.kafkaProducer import KafkaPublisher
from inventory.inventory_logic import InventoryLogic


class InventoryKafka:
    def __init__(self, logger, logic: InventoryLogic, broker: BrokerConnection,
                 publisher: KafkaPublisher, ledger: ProcessedEventLedger) -> None:
        self.logger = logger
        self.logic = logic
        self.broker = broker
        self.publisher = publisher
        self.ledger = ledger
        self.runner: Optional[KafkaConsumerRunner] = None

    @property
    def handlers(self):
        return {
            EVENT_ORDER_CREATED: self.handle_order_created,
            EVENT_ORDER_CANCELLED: self.handle_order_cancelled,
        }

    @property
    def running(self) -> bool:
        return self.runner is not None and self.runner.running

    async def handle_order_created(self, event: OrderCreated):
        self.logger.info(f"[v] Received order.created for order {event.payload.order_id}")
        result, err = await self.logic.process_order_created(event)

        if err:
            raise err

        if result.success:
            self.logger.info(f"Inventory reserved for order {event.payload.order_id}")
        else:
            self.logger.info(f"Inventory rejected order {event.payload.order_id}: {result.reason}")
        await self.publisher.publish(EVENT_INVENTORY_STATUS_UPDATED, result.event)

    async def handle_order_cancelled(self, event: OrderCancelled):
        self.logger.info(f"[v] Received order.cancelled for order {event.payload.order_id}")
        _, err = await self.logic.process_order_cancelled(event)

        if err:
            raise err

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
