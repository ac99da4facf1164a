import os
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from common.errors import database_error
from inventory import seeder
from inventory.inventory_logic import SeedProduct


class TestSeeder(unittest.TestCase):

    def write_file(self, content: bytes) -> str:
        fd, path = tempfile.mkstemp(suffix=".json")
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        self.addCleanup(os.remove, path)
        return path

    @patch("inventory.seeder.seed_inventory", new_callable=AsyncMock)
    def test_seeds_products_from_file(self, mock_seed):
        mock_seed.return_value = 1
        path = self.write_file(b'[{"productId": "p1", "quantity": 3, "name": "Cable"}]')

        seeder.main(["--file", path])

        mock_seed.assert_awaited_once_with([SeedProduct(product_id="p1", quantity=3, name="Cable")])


    @patch("inventory.seeder.seed_inventory", new_callable=AsyncMock)
    def test_malformed_file_exits_with_status_1(self, mock_seed):
        path = self.write_file(b'[{"productId": "p1"')

        with self.assertRaises(SystemExit) as ctx:
            seeder.main(["--file", path])

        self.assertEqual(ctx.exception.code, 1)
        mock_seed.assert_not_called()


    @patch("inventory.seeder.seed_inventory", new_callable=AsyncMock)
    def test_invalid_products_exit_with_status_1(self, mock_seed):
        path = self.write_file(b'[{"productId": "p1", "quantity": "many"}]')

        with self.assertRaises(SystemExit) as ctx:
            seeder.main(["--file", path])

        self.assertEqual(ctx.exception.code, 1)
        mock_seed.assert_not_called()


    @patch("inventory.seeder.seed_inventory", new_callable=AsyncMock)
    def test_store_failure_exits_with_status_1(self, mock_seed):
        mock_seed.side_effect = database_error("Failed to seed inventory")

        with self.assertRaises(SystemExit) as ctx:
            seeder.main([])

        self.assertEqual(ctx.exception.code, 1)
        mock_seed.assert_awaited_once_with(None)


if __name__ == '__main__':
    unittest.main()
