import logging
import unittest

from redis.exceptions import ConnectionError

from common.db.processed_events import ProcessedEventLedger
from common.errors import ErrorKind
from common.kafka.envelope import InventoryStatusPayload, new_event
from common.kafka.events_config import *
from notification.notification_logic import SENT, NotificationLogic
from store_doubles import InMemoryStore


def inventory_status(status, reason=None, order_id="o1"):
    return new_event(EVENT_INVENTORY_STATUS_UPDATED,
                     InventoryStatusPayload(order_id=order_id, status=status, reason=reason), INVENTORY_SERVICE)


class TestNotificationLogic(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.db = InMemoryStore(NOTIFICATION_SERVICE)
        self.ledger = ProcessedEventLedger(self.db)
        self.logic = NotificationLogic(logging.getLogger("test"), self.db, self.ledger)

    async def test_success_notification(self):
        event = inventory_status(INVENTORY_SUCCESS)

        notification, err = await self.logic.process_inventory_status(event)

        self.assertIsNone(err)
        self.assertEqual(notification.message, "Order o1 processed successfully.")
        self.assertEqual(notification.status, INVENTORY_SUCCESS)
        self.assertEqual(notification.template, "order-success")
        self.assertTrue(await self.ledger.is_processed(event.event_id))


    async def test_failure_notification(self):
        notification, _ = await self.logic.process_inventory_status(
            inventory_status(INVENTORY_FAILURE, "Insufficient inventory for product p1"))

        self.assertEqual(notification.message, "Order o1 failed: Insufficient inventory for product p1")
        self.assertEqual(notification.status, INVENTORY_FAILURE)


    async def test_failure_without_reason(self):
        notification, _ = await self.logic.process_inventory_status(inventory_status(INVENTORY_FAILURE))

        self.assertEqual(notification.message, "Order o1 failed: Unknown error")


    async def test_notifications_are_listed_per_order(self):
        await self.logic.process_inventory_status(inventory_status(INVENTORY_FAILURE, "x"))
        await self.logic.process_inventory_status(inventory_status(INVENTORY_SUCCESS))
        await self.logic.process_inventory_status(inventory_status(INVENTORY_SUCCESS, order_id="o2"))

        notifications, err = await self.logic.get_notifications("o1")

        self.assertIsNone(err)
        self.assertEqual([n.status for n in notifications], [INVENTORY_FAILURE, INVENTORY_SUCCESS])
        self.assertEqual((await self.logic.get_notifications("o3"))[0], [])


    async def test_store_failure(self):
        self.db.fail_with = ConnectionError("down")

        notification, err = await self.logic.process_inventory_status(inventory_status(INVENTORY_SUCCESS))

        self.assertIsNone(notification)
        self.assertIs(err.kind, ErrorKind.DATABASE)


    async def test_custom_notification(self):
        notification, err = await self.logic.send_custom("+3161234", "Hi", "z" * 300, "sms")

        self.assertIsNone(err)
        self.assertEqual(notification.recipient, "+3161234")
        self.assertEqual(len(notification.message), 160)
        self.assertEqual(notification.status, SENT)
        self.assertTrue(await self.db.exists(self.logic.custom_key(notification.id)))


    async def test_custom_notification_unknown_channel(self):
        notification, err = await self.logic.send_custom("a@b.c", "Hi", "body", "fax")

        self.assertIsNone(notification)
        self.assertIs(err.kind, ErrorKind.VALIDATION)


if __name__ == '__main__':
    unittest.main()
