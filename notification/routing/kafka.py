from typing import Optional

from common.db.processed_events import ProcessedEventLedger
from common.kafka.connection import BrokerConnection
from common.kafka.envelope import InventoryStatusUpdated
from common.kafka.events_config import *
from common.kafka.kafkaConsumer import KafkaConsumerRunner
from common.kafka.kafkaProducer import KafkaPublisher
from notification.notification_logic import NotificationLogic


class NotificationKafka:
    def __init__(self, logger, logic: NotificationLogic, broker: BrokerConnection,
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
        _, err = await self.logic.process_inventory_status(event)

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
