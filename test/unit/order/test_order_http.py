import unittest
from unittest.mock import AsyncMock

from quart import Quart

from common.errors import database_error, message_queue_error, order_cancellation, order_not_found
from common.http import register_error_handlers
from common.kafka.envelope import LineItem
from common.kafka.events_config import *
from order.order_logic import OrderValue
from order.routing.http import create_blueprint


def order_value(status=ORDER_PENDING, user_id="u1"):
    return OrderValue(id="o1", user_id=user_id, products=[LineItem(product_id="p1", quantity=2)],
                      total_price=20, status=status, created_at="t0", updated_at="t0")


class TestOrderHttp(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        """Set up a Quart test client over mocked logic and events."""
        self.logic = AsyncMock()
        self.events = AsyncMock()
        self.db_check = AsyncMock(return_value=True)
        self.broker_check = AsyncMock(return_value=True)
        app = Quart(__name__)
        app.register_blueprint(create_blueprint(self.logic, self.events,
                                                {"database": self.db_check, "broker": self.broker_check}))
        register_error_handlers(app)
        self.test_client = app.test_client()

    async def test_create_order(self):
        self.logic.create_order.return_value = (order_value(), None)
        body = {"userId": "u1", "products": [{"productId": "p1", "quantity": 2}], "totalPrice": 20}

        response = await self.test_client.post("/orders", json=body)
        data = await response.get_json()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(data, {"message": "Order created and is being processed.", "orderId": "o1"})
        self.logic.create_order.assert_awaited_once_with("u1", [LineItem(product_id="p1", quantity=2)], 20)
        self.events.publish_order_created.assert_awaited_once_with(order_value())


    async def test_create_order_validation(self):
        """Bad input is rejected before reaching the order logic."""
        bodies = [
            {"products": [{"productId": "p1", "quantity": 2}], "totalPrice": 20},
            {"userId": "u1", "products": [], "totalPrice": 20},
            {"userId": "u1", "products": [{"productId": "p1", "quantity": 0}], "totalPrice": 20},
            {"userId": "u1", "products": [{"productId": "p1", "quantity": 1}], "totalPrice": -1},
        ]
        for body in bodies:
            response = await self.test_client.post("/orders", json=body)
            data = await response.get_json()

            self.assertEqual(response.status_code, 400, body)
            self.assertEqual(data["error"]["code"], "VALIDATION_ERROR")
        self.logic.create_order.assert_not_called()


    async def test_create_order_publish_failure(self):
        self.logic.create_order.return_value = (order_value(), None)
        self.events.publish_order_created.side_effect = message_queue_error("broker down", topic="t")
        body = {"userId": "u1", "products": [{"productId": "p1", "quantity": 2}], "totalPrice": 20}

        response = await self.test_client.post("/orders", json=body)
        data = await response.get_json()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(data["error"], {"code": "INTERNAL_ERROR", "message": "Internal Server Error"})


    async def test_find_order(self):
        self.logic.get_order.return_value = (order_value(), None)

        response = await self.test_client.get("/orders/o1")
        data = await response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["id"], "o1")
        self.assertEqual(data["userId"], "u1")
        self.assertEqual(data["status"], "PENDING")
        self.assertEqual(data["products"], [{"productId": "p1", "quantity": 2}])


    async def test_find_order_not_found(self):
        self.logic.get_order.return_value = (None, order_not_found("o1"))

        response = await self.test_client.get("/orders/o1")
        data = await response.get_json()

        self.assertEqual(response.status_code, 404)
        self.assertEqual(data["error"]["code"], "ORDER_NOT_FOUND")
        self.assertEqual(data["error"]["details"], {"orderId": "o1"})


    async def test_find_order_db_error_hides_detail(self):
        self.logic.get_order.return_value = (None, database_error("Failed to get order", orderId="o1"))

        response = await self.test_client.get("/orders/o1")
        data = await response.get_json()

        self.assertEqual(response.status_code, 500)
        self.assertNotIn("details", data["error"])


    async def test_list_orders_by_user_and_status(self):
        self.logic.get_orders_by_user.return_value = (
            [order_value(ORDER_CONFIRMED), order_value(ORDER_PENDING)], None)

        response = await self.test_client.get("/orders?userId=u1&status=CONFIRMED")
        data = await response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual([o["status"] for o in data], ["CONFIRMED"])


    async def test_list_orders_unknown_status(self):
        response = await self.test_client.get("/orders?status=SHIPPED")

        self.assertEqual(response.status_code, 400)


    async def test_cancel_order(self):
        self.logic.cancel_order.return_value = (order_value(ORDER_CANCELLED), None)

        response = await self.test_client.delete("/orders/o1", json={"userId": "u1"})
        data = await response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data, {"message": "Order cancelled successfully", "orderId": "o1"})
        self.logic.cancel_order.assert_awaited_once_with("o1", "u1")
        self.events.publish_order_cancelled.assert_awaited_once()


    async def test_cancel_confirmed_order(self):
        self.logic.cancel_order.return_value = (
            None, order_cancellation("o1", "Confirmed orders cannot be cancelled"))

        response = await self.test_client.delete("/orders/o1", json={"userId": "u1"})
        data = await response.get_json()

        self.assertEqual(response.status_code, 400)
        self.assertEqual(data["error"]["code"], "ORDER_CANCELLATION_ERROR")
        self.events.publish_order_cancelled.assert_not_called()


    async def test_health(self):
        response = await self.test_client.get("/health")
        data = await response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["status"], "healthy")
        self.assertEqual(data["service"], "order-service")
        self.assertEqual(data["checks"], {"database": "connected", "broker": "connected"})


    async def test_health_unhealthy(self):
        self.broker_check.return_value = False

        response = await self.test_client.get("/health")
        data = await response.get_json()

        self.assertEqual(response.status_code, 503)
        self.assertEqual(data["checks"]["broker"], "disconnected")


    async def test_unknown_route(self):
        response = await self.test_client.get("/nope")

        self.assertEqual(response.status_code, 404)


if __name__ == '__main__':
    unittest.main()
