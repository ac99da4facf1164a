from aiokafka import ConsumerRebalanceListener, TopicPartition
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
import asyncio
import logging

from opentelemetry import metrics, trace

from common.db.processed_events import ProcessedEventLedger
from common.errors import ServiceError, invalid_event
from common.kafka.connection import BrokerConnection
from common.kafka.envelope import AppEvent, decode_event
from common.kafka.events_config import *
from common.kafka.kafkaProducer import KafkaPublisher
from common.kafka.topology import QueueSpec

tracer = trace.get_tracer(__name__)
meter = metrics.get_meter(__name__)
processed_counter = meter.create_counter("messages.processed", description="Messages handled and acknowledged")
duplicate_counter = meter.create_counter("messages.duplicate", description="Deliveries of already processed events")
dead_letter_counter = meter.create_counter("messages.dead_lettered", description="Messages rejected to the DLQ")

ACKED = "acked"
DUPLICATE = "duplicate"
DEAD_LETTERED = "dead-lettered"

Handler = Callable[[AppEvent], Awaitable[None]]


class KafkaConsumerRunner:
    """Consumes one work queue, one message at a time.

    received -> decode -> dedup -> handle -> commit, or, when decoding or the
    handler fails, received -> reject to the dead-letter exchange -> commit.
    """

    class SafeRebalanceListener(ConsumerRebalanceListener):
        def __init__(self, runner):
            self.runner = runner

        async def on_partitions_revoked(self, revoked):
            logging.info(f"[REBALANCE] Revoking partitions: {revoked}")
            # let the in-flight message finish and commit before giving partitions away
            async with self.runner._rebalance_lock:
                pass

        async def on_partitions_assigned(self, assigned):
            logging.info(f"[REBALANCE] Assigned new partitions: {assigned}")

    def __init__(self,
                 broker: BrokerConnection,
                 queue: QueueSpec,
                 handlers: dict[str, Handler],
                 ledger: ProcessedEventLedger,
                 publisher: KafkaPublisher,
                 retry_delay: float = 1.0):
        self.broker = broker
        self.queue = queue
        self.handlers = handlers
        self.ledger = ledger
        self.publisher = publisher
        self.retry_delay = retry_delay
        self.consumer = None
        self._task: Optional[asyncio.Task] = None
        self._rebalance_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        topics = self.broker.topology.topics_for(self.queue)
        self.consumer = self.broker.create_consumer(self.queue.name)
        self.consumer.subscribe(topics, listener=self.SafeRebalanceListener(self))
        await self.consumer.start()
        logging.info(f"Kafka Consumer Started for queue {self.queue.name} on topics: {topics}")
        self._task = asyncio.create_task(self._consume_events())
        return self

    async def _consume_events(self):
        while True:
            try:
                async for message in self.consumer:
                    async with self._rebalance_lock:
                        await self.handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logging.error(f"Error during event consuming on {self.queue.name}: {e}")
                await asyncio.sleep(self.retry_delay)
                continue

    async def handle_message(self, message) -> str:
        tp = TopicPartition(message.topic, message.partition)
        try:
            outcome = await self.process(message)
        except Exception:
            # not even the dead-letter produce went through: redeliver this message
            self.consumer.seek(tp, message.offset)
            raise
        await self.consumer.commit({tp: message.offset + 1})
        return outcome

    async def process(self, message) -> str:
        headers = dict(message.headers or ())
        with tracer.start_as_current_span(f"consume {self.queue.name}") as span:
            span.set_attribute("messaging.source", message.topic)
            span.set_attribute("messaging.kafka.offset", message.offset)
            try:
                event = decode_event(message.value)
            except ServiceError as e:
                logging.error(f"Undecodable message on {self.queue.name}, sending to DLQ: {e.message}")
                await self.dead_letter(message, e)
                return DEAD_LETTERED

            span.set_attribute("messaging.message_id", event.event_id)
            if HEADER_REPLAYED in headers:
                logging.info(f"Processing replayed event {event.event_id} ({event.type})")

            handler = self.handlers.get(event.type)
            if handler is None:
                error = invalid_event(event.type, f"no handler bound on queue {self.queue.name}")
                logging.error(f"{error.message}, sending to DLQ")
                await self.dead_letter(message, error)
                return DEAD_LETTERED

            try:
                record = await self.ledger.get(event.event_id)
                if record is not None:
                    logging.info(f"Event {event.event_id} already processed. Skipping.")
                    if record.outcome is not None:
                        await self.publisher.publish(record.outcome.type, record.outcome)
                    duplicate_counter.add(1, {"queue": self.queue.name})
                    return DUPLICATE
                await handler(event)
            except Exception as e:
                logging.error(f"Error processing {event.type} {event.event_id}, sending to DLQ: {e}")
                span.record_exception(e)
                await self.dead_letter(message, e)
                return DEAD_LETTERED

        processed_counter.add(1, {"queue": self.queue.name, "type": event.type})
        return ACKED

    async def dead_letter(self, message, error: BaseException):
        """Reject without requeue: route the untouched message to the dead-letter exchange."""
        if not self.queue.dead_letter_exchange:
            logging.warning(f"Queue {self.queue.name} has no dead-letter exchange, dropping message at "
                            f"{message.topic}[{message.partition}]@{message.offset}")
            return
        death_headers = {HEADER_DEATH_QUEUE, HEADER_DEATH_EXCHANGE, HEADER_DEATH_REASON,
                         HEADER_ORIGINAL_TOPIC, HEADER_DEATH_ERROR, HEADER_DEATH_TIMESTAMP}
        headers = [(k, v) for k, v in (message.headers or ()) if k not in death_headers]
        headers += [
            (HEADER_DEATH_QUEUE, self.queue.name.encode("utf-8")),
            (HEADER_DEATH_EXCHANGE, self.broker.topology.exchange.name.encode("utf-8")),
            (HEADER_DEATH_REASON, b"rejected"),
            (HEADER_ORIGINAL_TOPIC, message.topic.encode("utf-8")),
            (HEADER_DEATH_ERROR, str(error)[:512].encode("utf-8")),
            (HEADER_DEATH_TIMESTAMP, datetime.now(timezone.utc).isoformat().encode("utf-8")),
        ]
        await self.publisher.publish_raw(self.queue.dead_letter_exchange, message.value, message.key, headers)
        dead_letter_counter.add(1, {"queue": self.queue.name})

    async def close(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logging.info("Consumer task cancelled")
            self._task = None
        if self.consumer:
            await self.consumer.stop()
            logging.info(f"Kafka Consumer for {self.queue.name} stopped")
            self.consumer = None
