from typing import Annotated

from msgspec import Meta, Struct
from quart import Blueprint, jsonify

from common.http import decode_body, health_report, to_builtins
from common.kafka.events_config import NOTIFICATION_SERVICE
from notification.notification_logic import NotificationLogic
from notification.templates import EMAIL, TEMPLATES


class CustomNotificationRequest(Struct):
    recipient: Annotated[str, Meta(min_length=1)]
    subject: Annotated[str, Meta(min_length=1)]
    message: Annotated[str, Meta(min_length=1)]
    type: str = EMAIL


def create_blueprint(logic: NotificationLogic, health_checks) -> Blueprint:
    bp = Blueprint("notifications", __name__)

    @bp.get('/health')
    async def health():
        return await health_report(NOTIFICATION_SERVICE, health_checks)

    @bp.post('/notifications')
    async def send_notification():
        body = await decode_body(CustomNotificationRequest)
        notification, err = await logic.send_custom(body.recipient, body.subject, body.message, body.type)

        if err:
            raise err

        return jsonify({
            'success': True,
            'message': 'Custom notification sent successfully',
            'notification': to_builtins(notification)
        })

    @bp.get('/notifications/<order_id>')
    async def order_notifications(order_id: str):
        notifications, err = await logic.get_notifications(order_id)

        if err:
            raise err

        return jsonify(to_builtins(notifications))

    @bp.get('/templates')
    async def list_templates():
        return jsonify(to_builtins(list(TEMPLATES.values())))

    return bp
