import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from aiokafka import TopicPartition

from common.kafka.dlq_replay import DeadLetterReplayer
from common.kafka.events_config import *
from common.kafka.topology import topology_for_service

DLX = "ecommerce_events_dlx"


def dead_letter(offset, queue=NOTIFICATION_QUEUE, partition=0):
    return SimpleNamespace(
        topic=DLX,
        partition=partition,
        offset=offset,
        key=b"o1",
        value=b'{"type":"inventory.status.updated"}',
        headers=[("event-id", b"e1"), (HEADER_DEATH_QUEUE, queue.encode())],
    )


class FakeDLQConsumer:
    """Serves the given messages from one partition, tracking position and commits."""

    def __init__(self, messages):
        self.messages = messages
        self.tp = TopicPartition(DLX, 0)
        self.position_ = 0
        self.committed = {}
        self.start = AsyncMock()
        self.stop = AsyncMock()
        self.assigned = None

    def assign(self, tps):
        self.assigned = tps

    async def end_offsets(self, tps):
        return {tp: (len(self.messages) if tp == self.tp else 0) for tp in tps}

    async def position(self, tp):
        return self.position_ if tp == self.tp else 0

    async def getmany(self, *tps, timeout_ms=0):
        batch = self.messages[self.position_:]
        self.position_ = len(self.messages)
        return {self.tp: batch} if batch else {}

    async def commit(self, offsets):
        self.committed.update(offsets)


class TestDeadLetterReplayer(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.topology = topology_for_service(NOTIFICATION_SERVICE, "ecommerce_events")
        self.broker = MagicMock()
        self.broker.topology = self.topology
        self.broker.producer = AsyncMock()
        self.broker.producer.partitions_for.return_value = {0, 1}
        self.publisher = AsyncMock()

    def replayer(self, consumer, timeout=5.0):
        self.broker.create_consumer.return_value = consumer
        return DeadLetterReplayer(
            self.broker,
            self.publisher,
            self.topology.queues[0],
            self.topology.dead_letter_queues[0],
            timeout=timeout,
            replay_delay=0,
        )

    async def test_replays_to_the_work_queue_with_marker(self):
        """Every dead letter from the queue is republished to its direct topic and committed."""
        consumer = FakeDLQConsumer([dead_letter(0), dead_letter(1)])

        replayed = await self.replayer(consumer).run()

        self.assertEqual(replayed, 2)
        self.assertEqual(self.publisher.publish_to_queue.await_count, 2)
        queue, value, key, headers = self.publisher.publish_to_queue.call_args[0]
        self.assertEqual(queue, NOTIFICATION_QUEUE)
        self.assertEqual(value, b'{"type":"inventory.status.updated"}')
        self.assertEqual(dict(headers)[HEADER_REPLAYED], b"true")
        self.assertIn(HEADER_REPLAY_TIMESTAMP, dict(headers))
        self.assertEqual(consumer.committed, {consumer.tp: 2})
        self.broker.create_consumer.assert_called_once_with(NOTIFICATION_DLQ)
        consumer.stop.assert_awaited_once()


    async def test_skips_messages_of_other_queues(self):
        consumer = FakeDLQConsumer([dead_letter(0, queue=ORDER_QUEUE), dead_letter(1)])
        replayer = self.replayer(consumer)

        replayed = await replayer.run()

        self.assertEqual(replayed, 1)
        self.assertEqual(replayer.skipped, 1)
        self.assertEqual(consumer.committed, {consumer.tp: 2})


    async def test_empty_dlq(self):
        consumer = FakeDLQConsumer([])

        replayed = await self.replayer(consumer).run()

        self.assertEqual(replayed, 0)
        self.publisher.publish_to_queue.assert_not_called()
        consumer.stop.assert_awaited_once()


    async def test_stops_at_timeout(self):
        consumer = FakeDLQConsumer([dead_letter(0)])

        replayed = await self.replayer(consumer, timeout=0).run()

        self.assertEqual(replayed, 0)
        self.assertEqual(consumer.committed, {})


if __name__ == '__main__':
    unittest.main()
