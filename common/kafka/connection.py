import asyncio
import logging
from typing import Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.admin import AIOKafkaAdminClient
from aiokafka.errors import KafkaError

from common.config import ServiceConfig
from common.errors import ErrorKind, ServiceError, connection_error
from common.kafka.topology import ServiceTopology, declare_topology


class BrokerConnection:
    """Owns the producer and admin client of one service process.

    Created at startup, handed to the publisher, the consumer runtime and the
    DLQ replay, and closed at shutdown.
    """

    def __init__(self, config: ServiceConfig, topology: ServiceTopology):
        self.config = config
        self.topology = topology
        self.producer: Optional[AIOKafkaProducer] = None
        self.admin: Optional[AIOKafkaAdminClient] = None

    @property
    def connected(self) -> bool:
        return self.producer is not None

    async def connect(self):
        """Connect and declare the topology, retrying only here, at startup.

        Raises a CONNECTION error once ``broker_connect_retries`` attempts have
        failed; a TOPOLOGY error is raised immediately.
        """
        retries = self.config.broker_connect_retries
        for attempt in range(1, retries + 1):
            try:
                await self._open()
                await declare_topology(self.admin, self.producer, self.topology,
                                       self.config.topic_partitions, self.config.topic_replication_factor)
                logging.info(f"{self.config.service_name}: Kafka connected")
                return self
            except ServiceError as e:
                await self.close()
                if e.kind is ErrorKind.TOPOLOGY:
                    logging.error(f"Topology mismatch, not retrying: {e.message}")
                    raise
                error = e
            except (KafkaError, OSError) as e:
                await self.close()
                error = e
            logging.error(f"Failed to connect to Kafka (attempt {attempt}/{retries}): {error}")
            if attempt < retries:
                await asyncio.sleep(self.config.broker_connect_backoff)
        logging.error("Max retries reached.")
        raise connection_error("kafka", attempts=retries, bootstrapServers=self.config.kafka_bootstrap_servers)

    async def _open(self):
        self.producer = AIOKafkaProducer(
            bootstrap_servers=self.config.kafka_bootstrap_servers,
            acks="all",
            enable_idempotence=True,
        )
        await self.producer.start()
        self.admin = AIOKafkaAdminClient(bootstrap_servers=self.config.kafka_bootstrap_servers)
        await self.admin.start()

    def create_consumer(self, group_id: str, *topics: str) -> AIOKafkaConsumer:
        return AIOKafkaConsumer(
            *topics,
            bootstrap_servers=self.config.kafka_bootstrap_servers,
            group_id=group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )

    async def close(self):
        if self.producer is not None:
            try:
                await self.producer.stop()
            except KafkaError as e:
                logging.warning(f"Error while stopping Kafka producer: {e}")
            self.producer = None
            logging.info("Kafka Producer stopped")
        if self.admin is not None:
            try:
                await self.admin.close()
            except KafkaError as e:
                logging.warning(f"Error while closing Kafka admin client: {e}")
            self.admin = None
