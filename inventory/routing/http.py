from typing import Annotated, Optional

from msgspec import Meta, Struct
from quart import Blueprint, jsonify

from common.http import decode_body, health_report, to_builtins
from common.kafka.events_config import INVENTORY_SERVICE
from inventory.inventory_logic import InventoryLogic


class AddInventoryRequest(Struct, rename="camel"):
    quantity: Annotated[int, Meta(gt=0)]
    name: Optional[str] = None


def create_blueprint(logic: InventoryLogic, health_checks) -> Blueprint:
    bp = Blueprint("inventory", __name__)

    @bp.get('/health')
    async def health():
        return await health_report(INVENTORY_SERVICE, health_checks)

    @bp.get('/inventory/<product_id>')
    async def find_inventory(product_id: str):
        quantity, err = await logic.get_inventory(product_id)

        if err:
            raise err

        return jsonify({
            'productId': product_id,
            'quantity': quantity,
            'available': quantity > 0
        })

    @bp.post('/inventory/<product_id>')
    async def add_inventory(product_id: str):
        body = await decode_body(AddInventoryRequest)
        record, err = await logic.add_inventory(product_id, body.quantity, body.name)

        if err:
            raise err

        return jsonify({
            'message': 'Inventory updated successfully',
            'inventory': to_builtins(record)
        })

    @bp.get('/inventory')
    async def inventory_summary():
        summary, err = await logic.get_summary()

        if err:
            raise err

        return jsonify(summary)

    return bp
