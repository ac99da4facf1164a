import unittest
from unittest.mock import AsyncMock

from quart import Quart

from common.errors import validation_error
from common.http import register_error_handlers
from notification.notification_logic import NotificationValue
from notification.routing.http import create_blueprint


def notification_value(**kwargs):
    values = dict(id="n1", recipient="a@b.c", type="email", message="body", status="SENT",
                  created_at="t0", subject="Hi")
    values.update(kwargs)
    return NotificationValue(**values)


class TestNotificationHttp(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.logic = AsyncMock()
        app = Quart(__name__)
        app.register_blueprint(create_blueprint(self.logic, {"broker": AsyncMock(return_value=True)}))
        register_error_handlers(app)
        self.test_client = app.test_client()

    async def test_send_notification(self):
        self.logic.send_custom.return_value = (notification_value(), None)

        response = await self.test_client.post(
            "/notifications", json={"recipient": "a@b.c", "subject": "Hi", "message": "body"})
        data = await response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertTrue(data["success"])
        self.assertEqual(data["notification"]["recipient"], "a@b.c")
        self.logic.send_custom.assert_awaited_once_with("a@b.c", "Hi", "body", "email")


    async def test_send_notification_requires_fields(self):
        response = await self.test_client.post("/notifications", json={"recipient": "a@b.c", "subject": "Hi"})
        data = await response.get_json()

        self.assertEqual(response.status_code, 400)
        self.assertEqual(data["error"]["code"], "VALIDATION_ERROR")
        self.logic.send_custom.assert_not_called()


    async def test_send_notification_unknown_type(self):
        self.logic.send_custom.return_value = (None, validation_error("Unknown notification type: fax"))

        response = await self.test_client.post(
            "/notifications", json={"recipient": "a", "subject": "b", "message": "c", "type": "fax"})

        self.assertEqual(response.status_code, 400)


    async def test_order_notifications(self):
        self.logic.get_notifications.return_value = ([notification_value(order_id="o1")], None)

        response = await self.test_client.get("/notifications/o1")
        data = await response.get_json()

        self.assertEqual(data[0]["orderId"], "o1")
        self.assertEqual(data[0]["createdAt"], "t0")


    async def test_templates(self):
        response = await self.test_client.get("/templates")
        data = await response.get_json()

        self.assertEqual([t["name"] for t in data], ["order-success", "order-failure"])
        self.assertEqual(data[1]["content"], "Order {{orderId}} failed: {{reason}}")


    async def test_health(self):
        response = await self.test_client.get("/health")
        data = await response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["service"], "notification-service")


if __name__ == '__main__':
    unittest.main()
