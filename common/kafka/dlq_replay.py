"""Operator-triggered replay of a service's dead-letter queue.

Drains the DLQ consumer group, re-publishes every message that died on the
service's work queue to that queue's direct topic, tagged with ``x-replayed``
and ``x-replay-timestamp``, and exits once the DLQ is drained or the timeout
has elapsed.

    ecommerce-dlq-replay --service notification-service
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone

from aiokafka import TopicPartition

from common.config import load_config
from common.errors import ServiceError
from common.kafka.connection import BrokerConnection
from common.kafka.events_config import *
from common.kafka.kafkaProducer import KafkaPublisher
from common.kafka.topology import QueueSpec, topology_for_service


class DeadLetterReplayer:

    def __init__(self,
                 broker: BrokerConnection,
                 publisher: KafkaPublisher,
                 queue: QueueSpec,
                 dlq: QueueSpec,
                 timeout: float = 30.0,
                 replay_delay: float = 0.1,
                 poll_timeout_ms: int = 1000):
        self.broker = broker
        self.publisher = publisher
        self.queue = queue
        self.dlq = dlq
        self.timeout = timeout
        self.replay_delay = replay_delay
        self.poll_timeout_ms = poll_timeout_ms
        self.replayed = 0
        self.skipped = 0

    async def run(self) -> int:
        dlx_topic = self.broker.topology.dead_letter_exchange.name
        partitions = await self.broker.producer.partitions_for(dlx_topic)
        tps = [TopicPartition(dlx_topic, p) for p in sorted(partitions)]
        consumer = self.broker.create_consumer(self.dlq.name)
        await consumer.start()
        try:
            consumer.assign(tps)
            end_offsets = await consumer.end_offsets(tps)
            pending = await self._pending(consumer, end_offsets)
            logging.info(f"DLQ {self.dlq.name} has {pending} messages to inspect")
            if pending == 0:
                logging.info("No messages in DLQ to replay")
                return 0

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.timeout
            while await self._pending(consumer, end_offsets) > 0:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logging.info("Timeout reached, closing connection")
                    break
                batch = await consumer.getmany(*tps, timeout_ms=int(min(self.poll_timeout_ms, remaining * 1000)))
                for tp, messages in batch.items():
                    for message in messages:
                        if message.offset >= end_offsets[tp]:
                            continue
                        await self.replay(message)
                        await consumer.commit({tp: message.offset + 1})
            else:
                logging.info("All DLQ messages have been replayed")
        finally:
            await consumer.stop()
        return self.replayed

    async def _pending(self, consumer, end_offsets) -> int:
        pending = 0
        for tp, end in end_offsets.items():
            pending += max(0, end - await consumer.position(tp))
        return pending

    async def replay(self, message) -> bool:
        headers = dict(message.headers or ())
        died_on = headers.get(HEADER_DEATH_QUEUE, b"").decode("utf-8")
        if died_on != self.queue.name:
            self.skipped += 1
            logging.debug(f"Skipping dead letter from {died_on or 'unknown queue'}")
            return False

        replay_headers = [(k, v) for k, v in (message.headers or ())
                          if k not in (HEADER_REPLAYED, HEADER_REPLAY_TIMESTAMP)]
        replay_headers += [
            (HEADER_REPLAYED, b"true"),
            (HEADER_REPLAY_TIMESTAMP, datetime.now(timezone.utc).isoformat().encode("utf-8")),
        ]
        await self.publisher.publish_to_queue(self.queue.name, message.value, message.key, replay_headers)
        self.replayed += 1
        logging.info(f"[{self.replayed}] Replayed message: {message.value.decode('utf-8', errors='replace')}")
        if self.replay_delay:
            await asyncio.sleep(self.replay_delay)
        return True


async def replay_dead_letters(service_name: str, timeout: float = None) -> int:
    config = load_config(service_name)
    topology = topology_for_service(service_name, config.exchange_name)
    broker = BrokerConnection(config, topology)
    await broker.connect()
    try:
        replayer = DeadLetterReplayer(
            broker,
            KafkaPublisher(broker, service_name),
            topology.queues[0],
            topology.dead_letter_queues[0],
            timeout=timeout if timeout is not None else config.dlq_replay_timeout,
        )
        return await replayer.run()
    finally:
        await broker.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Replay a service's dead-letter queue onto its work queue")
    parser.add_argument("--service", required=True, choices=sorted(SERVICE_QUEUES))
    parser.add_argument("--timeout", type=float, default=None, help="Drain window in seconds")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        replayed = asyncio.run(replay_dead_letters(args.service, args.timeout))
    except ServiceError as e:
        logging.error(f"Error in DLQ replay: {e.message}")
        sys.exit(1)
    logging.info(f"Replayed {replayed} messages")


if __name__ == "__main__":
    main()
