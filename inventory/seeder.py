import argparse
import asyncio
import logging
import sys
from typing import Optional

import msgspec

from common.config import load_config
from common.db.processed_events import ProcessedEventLedger
from common.db.redis_db import RedisDB
from common.db.util import wait_for_db
from common.errors import ServiceError
from common.kafka.events_config import INVENTORY_SERVICE
from inventory.inventory_logic import InventoryLogic, SeedProduct


async def seed_inventory(products: Optional[list[SeedProduct]] = None) -> int:
    config = load_config(INVENTORY_SERVICE)
    db = RedisDB.from_config(config)
    try:
        await wait_for_db(db, config.broker_connect_retries, config.broker_connect_backoff)
        logic = InventoryLogic(logging.getLogger("inventory-seed"), db, ProcessedEventLedger(db))
        count, err = await logic.seed(products)
        if err:
            raise err
        return count
    finally:
        await db.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Load starting stock into the inventory store")
    parser.add_argument("--file", help="JSON list of {productId, quantity, name?}; defaults to the sample catalogue")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    products = None
    if args.file:
        try:
            with open(args.file, "rb") as f:
                products = msgspec.json.decode(f.read(), type=list[SeedProduct])
        except (OSError, msgspec.DecodeError) as e:
            logging.error(f"Cannot read products from {args.file}: {e}")
            sys.exit(1)
    try:
        count = asyncio.run(seed_inventory(products))
    except ServiceError as e:
        logging.error(f"Error seeding inventory: {e.message}")
        sys.exit(1)
    logging.info(f"Seeded {count} products")


if __name__ == "__main__":
    main()
