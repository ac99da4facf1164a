from typing import Annotated

from msgspec import Meta, Struct
from quart import Blueprint, jsonify, request

from common.errors import validation_error
from common.http import decode_body, health_report, to_builtins
from common.kafka.envelope import LineItem
from common.kafka.events_config import ORDER_SERVICE
from order.order_logic import ORDER_STATUSES, OrderLogic
from order.routing.kafka import OrderKafka


class CreateOrderRequest(Struct, rename="camel"):
    user_id: Annotated[str, Meta(min_length=1)]
    products: Annotated[list[LineItem], Meta(min_length=1)]
    total_price: Annotated[float, Meta(ge=0)]


class CancelOrderRequest(Struct, rename="camel"):
    user_id: Annotated[str, Meta(min_length=1)]


def create_blueprint(logic: OrderLogic, events: OrderKafka, health_checks) -> Blueprint:
    bp = Blueprint("orders", __name__)

    @bp.get('/health')
    async def health():
        return await health_report(ORDER_SERVICE, health_checks)

    @bp.post('/orders')
    async def create_order():
        body = await decode_body(CreateOrderRequest)
        order, err = await logic.create_order(body.user_id, body.products, body.total_price)

        if err:
            raise err

        # a failed publish fails the request; the order stays PENDING and can be cancelled
        await events.publish_order_created(order)
        return jsonify({
            'message': 'Order created and is being processed.',
            'orderId': order.id
        }), 201

    @bp.get('/orders/<order_id>')
    async def find_order(order_id: str):
        order, err = await logic.get_order(order_id)

        if err:
            raise err

        return jsonify(to_builtins(order))

    @bp.get('/orders')
    async def list_orders():
        user_id = request.args.get('userId')
        status = request.args.get('status')
        if status and status not in ORDER_STATUSES:
            raise validation_error(f"Unknown order status: {status}", status=status)

        if user_id:
            orders, err = await logic.get_orders_by_user(user_id)
            if not err and status:
                orders = [o for o in orders if o.status == status]
        else:
            orders, err = await logic.get_orders(status)

        if err:
            raise err

        return jsonify(to_builtins(orders))

    @bp.delete('/orders/<order_id>')
    async def cancel_order(order_id: str):
        body = await decode_body(CancelOrderRequest)
        order, err = await logic.cancel_order(order_id, body.user_id)

        if err:
            raise err

        await events.publish_order_cancelled(order)
        return jsonify({'message': 'Order cancelled successfully', 'orderId': order.id})

    return bp
