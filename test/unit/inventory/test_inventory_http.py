import unittest
from unittest.mock import AsyncMock

from quart import Quart

from common.errors import database_error
from common.http import register_error_handlers
from inventory.inventory_logic import InventoryValue
from inventory.routing.http import create_blueprint


class TestInventoryHttp(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.logic = AsyncMock()
        app = Quart(__name__)
        app.register_blueprint(create_blueprint(self.logic, {"database": AsyncMock(return_value=True)}))
        register_error_handlers(app)
        self.test_client = app.test_client()

    async def test_find_inventory(self):
        self.logic.get_inventory.return_value = (3, None)

        response = await self.test_client.get("/inventory/p1")
        data = await response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data, {"productId": "p1", "quantity": 3, "available": True})


    async def test_find_inventory_empty(self):
        self.logic.get_inventory.return_value = (0, None)

        response = await self.test_client.get("/inventory/p1")
        data = await response.get_json()

        self.assertFalse(data["available"])


    async def test_add_inventory(self):
        self.logic.add_inventory.return_value = (InventoryValue(product_id="p1", quantity=8, name="Laptop"), None)

        response = await self.test_client.post("/inventory/p1", json={"quantity": 3, "name": "Laptop"})
        data = await response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["inventory"], {"productId": "p1", "quantity": 8, "name": "Laptop"})
        self.logic.add_inventory.assert_awaited_once_with("p1", 3, "Laptop")


    async def test_add_inventory_requires_positive_quantity(self):
        for body in ({"quantity": 0}, {"quantity": -2}, {"name": "x"}):
            response = await self.test_client.post("/inventory/p1", json=body)

            self.assertEqual(response.status_code, 400, body)
        self.logic.add_inventory.assert_not_called()


    async def test_summary(self):
        summary = {"total": 3, "products": [{"productId": "p1", "quantity": 3, "name": None}]}
        self.logic.get_summary.return_value = (summary, None)

        response = await self.test_client.get("/inventory")

        self.assertEqual(await response.get_json(), summary)


    async def test_summary_db_error(self):
        self.logic.get_summary.return_value = ({"total": 0, "products": []}, database_error("down"))

        response = await self.test_client.get("/inventory")

        self.assertEqual(response.status_code, 500)


if __name__ == '__main__':
    unittest.main()
