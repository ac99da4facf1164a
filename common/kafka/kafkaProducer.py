import logging
from typing import Optional, Sequence

from aiokafka.errors import KafkaError
from opentelemetry import trace

from common.errors import message_queue_error
from common.kafka.connection import BrokerConnection
from common.kafka.envelope import EventEnvelope, encode_event, new_event, partition_key
from common.kafka.events_config import HEADER_EVENT_ID, HEADER_EVENT_TYPE
from common.kafka.topology import direct_topic, exchange_topic

tracer = trace.get_tracer(__name__)

Headers = Sequence[tuple[str, bytes]]


class KafkaPublisher:
    """Hands events to the broker. One call, one message, no retry."""

    def __init__(self, broker: BrokerConnection, source: str):
        self.broker = broker
        self.source = source

    @property
    def exchange(self) -> str:
        return self.broker.topology.exchange.name

    async def publish(self, routing_key: str, event: EventEnvelope):
        headers = [
            (HEADER_EVENT_ID, event.event_id.encode("utf-8")),
            (HEADER_EVENT_TYPE, event.type.encode("utf-8")),
        ]
        topic = exchange_topic(self.exchange, routing_key)
        with tracer.start_as_current_span(f"publish {routing_key}") as span:
            span.set_attribute("messaging.destination", topic)
            span.set_attribute("messaging.message_id", event.event_id)
            await self._send(topic, encode_event(event), partition_key(event), headers)
        logging.info(f"[x] Sent {routing_key}: '{event.event_id}' for order {event.payload.order_id}")

    async def emit(self, event_type: str, payload) -> EventEnvelope:
        event = new_event(event_type, payload, self.source)
        await self.publish(event_type, event)
        return event

    async def publish_to_queue(self, queue: str, value: bytes, key: Optional[bytes] = None,
                               headers: Optional[Headers] = None):
        await self._send(direct_topic(self.exchange, queue), value, key, headers)

    async def publish_raw(self, topic: str, value: bytes, key: Optional[bytes] = None,
                          headers: Optional[Headers] = None):
        await self._send(topic, value, key, headers)

    async def _send(self, topic: str, value: bytes, key: Optional[bytes], headers: Optional[Headers]):
        producer = self.broker.producer
        if producer is None:
            raise message_queue_error("Kafka producer is not connected", topic=topic)
        try:
            await producer.send_and_wait(topic, value=value, key=key, headers=list(headers or []))
        except KafkaError as e:
            logging.error(f"Failed to publish to {topic}: {e}")
            raise message_queue_error(f"Failed to publish to {topic}", topic=topic, error=str(e)) from e
