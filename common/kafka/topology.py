"""Broker topology: a shared topic exchange, per-service work queues and a
fan-out dead-letter exchange, laid out on Kafka.

* exchange ``X`` with routing key ``k``  -> topic ``X.k``
* queue ``q``                            -> consumer group ``q`` over the topics of
                                            every routing key its bindings match,
                                            plus its direct topic ``X.direct.q``
* dead-letter exchange ``X_dlx``         -> topic ``X_dlx`` (fan-out: one topic)
* dead-letter queue ``d``                -> consumer group ``d`` over ``X_dlx``

Declaring is idempotent. A topic that already exists with another partition
count is a mismatch and fails startup.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import TopicAlreadyExistsError, for_code

from common.errors import topology_error
from common.kafka.events_config import ROUTING_KEYS, SERVICE_QUEUES

TOPIC = "topic"
FANOUT = "fanout"


@dataclass(frozen=True)
class ExchangeSpec:
    name: str
    kind: str = TOPIC
    durable: bool = True


@dataclass(frozen=True)
class QueueSpec:
    name: str
    bindings: tuple[str, ...] = ()
    dead_letter_exchange: Optional[str] = None
    durable: bool = True


@dataclass
class ServiceTopology:
    exchange: ExchangeSpec
    dead_letter_exchange: ExchangeSpec
    queues: list[QueueSpec] = field(default_factory=list)
    dead_letter_queues: list[QueueSpec] = field(default_factory=list)
    routing_keys: tuple[str, ...] = ROUTING_KEYS

    def queue(self, name: str) -> QueueSpec:
        for queue in self.queues + self.dead_letter_queues:
            if queue.name == name:
                return queue
        raise KeyError(name)

    def bound_routing_keys(self, queue: QueueSpec) -> list[str]:
        return [key for key in self.routing_keys
                if any(routing_key_matches(pattern, key) for pattern in queue.bindings)]

    def topics_for(self, queue: QueueSpec) -> list[str]:
        if queue in self.dead_letter_queues:
            return [self.dead_letter_exchange.name]
        topics = [exchange_topic(self.exchange.name, key) for key in self.bound_routing_keys(queue)]
        topics.append(direct_topic(self.exchange.name, queue.name))
        return topics

    def declared_topics(self) -> list[str]:
        topics = [exchange_topic(self.exchange.name, key) for key in self.routing_keys]
        topics += [direct_topic(self.exchange.name, queue.name) for queue in self.queues]
        topics.append(self.dead_letter_exchange.name)
        return topics


def exchange_topic(exchange: str, routing_key: str) -> str:
    return f"{exchange}.{routing_key}"


def direct_topic(exchange: str, queue: str) -> str:
    return f"{exchange}.direct.{queue}"


def _match_words(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_match_words(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head == "*" or head == words[0]:
        return _match_words(rest, words[1:])
    return False


def routing_key_matches(pattern: str, routing_key: str) -> bool:
    """Topic-exchange matching: ``*`` is exactly one word, ``#`` zero or more."""
    return _match_words(pattern.split("."), routing_key.split("."))


def build_service_topology(exchange_name: str, queue_name: str, bindings, dlq_name: str) -> ServiceTopology:
    exchange = ExchangeSpec(exchange_name, TOPIC)
    dlx = ExchangeSpec(f"{exchange_name}_dlx", FANOUT)
    return ServiceTopology(
        exchange=exchange,
        dead_letter_exchange=dlx,
        queues=[QueueSpec(queue_name, tuple(bindings), dead_letter_exchange=dlx.name)],
        dead_letter_queues=[QueueSpec(dlq_name)],
    )


def topology_for_service(service_name: str, exchange_name: str) -> ServiceTopology:
    queue_name, dlq_name, bindings = SERVICE_QUEUES[service_name]
    return build_service_topology(exchange_name, queue_name, bindings, dlq_name)


async def declare_topology(admin: AIOKafkaAdminClient, producer, topology: ServiceTopology,
                           partitions: int, replication_factor: int):
    topics = topology.declared_topics()
    new_topics = [NewTopic(name=t, num_partitions=partitions, replication_factor=replication_factor)
                  for t in topics]
    response = await admin.create_topics(new_topics)
    existing = []
    for topic, error_code, *rest in response.topic_errors:
        if error_code == 0:
            logging.info(f"[TOPOLOGY] Declared topic {topic} ({partitions} partitions)")
            continue
        error = for_code(error_code)
        if error is TopicAlreadyExistsError:
            existing.append(topic)
            continue
        message = rest[0] if rest and rest[0] else error.__name__
        # broker-side failures are retried by the caller like any other connect error
        raise error(f"Failed to declare topic {topic}: {message}")

    for topic in existing:
        current = await producer.partitions_for(topic)
        if len(current) != partitions:
            raise topology_error(
                f"Topic {topic} already declared with {len(current)} partitions, expected {partitions}",
                topic=topic, declared=len(current), expected=partitions,
            )
        logging.info(f"[TOPOLOGY] Topic {topic} already declared")
    return topics
