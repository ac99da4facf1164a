import uuid
from datetime import datetime, timezone
from typing import Optional

from msgspec import Struct, structs
from redis import RedisError

from common.db.processed_events import ProcessedEventLedger
from common.db.redis_db import RedisDB
from common.errors import Result, database_error, validation_error
from common.kafka.envelope import InventoryStatusUpdated
from common.kafka.events_config import *
from notification import templates
from notification.templates import TEMPLATES, RenderedNotification

# recipient for saga notifications; orders carry no contact details
ORDER_RECIPIENT = "customer"
# delivery status of a custom notification
SENT = "SENT"


class NotificationValue(Struct, rename="camel", omit_defaults=True):
    id: str
    recipient: str
    type: str
    message: str
    status: str
    created_at: str
    subject: Optional[str] = None
    order_id: Optional[str] = None
    template: Optional[str] = None


class OrderNotifications(Struct, rename="camel"):
    order_id: str
    notifications: list[NotificationValue] = []


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationLogic:
    def __init__(self, logger, db: RedisDB, ledger: ProcessedEventLedger):
        self.logger = logger
        self.db = db
        self.ledger = ledger

    def order_key(self, order_id: str) -> str:
        return self.db.key("notifications", "order", order_id)

    def custom_key(self, notification_id: str) -> str:
        return self.db.key("notification", notification_id)

    def _deliver(self, rendered: RenderedNotification, status: str, **extra) -> NotificationValue:
        # delivery is a log line; there is no outbound channel
        self.logger.info(f"[Notification] To: {rendered.to}, Subject: {rendered.subject}, Message: {rendered.content}")
        return NotificationValue(
            id=str(uuid.uuid4()),
            recipient=rendered.to,
            type=rendered.type,
            message=rendered.content,
            status=status,
            created_at=_now(),
            subject=rendered.subject,
            **extra,
        )

    async def process_inventory_status(self, event: InventoryStatusUpdated) -> Result[NotificationValue]:
        order_id = event.payload.order_id
        if event.payload.status == INVENTORY_SUCCESS:
            template = TEMPLATES[templates.ORDER_SUCCESS]
            variables = {"orderId": order_id}
        else:
            template = TEMPLATES[templates.ORDER_FAILURE]
            variables = {"orderId": order_id, "reason": event.payload.reason or "Unknown error"}

        notification = self._deliver(
            templates.render(template, variables, ORDER_RECIPIENT),
            event.payload.status,
            order_id=order_id,
            template=template.name,
        )
        record = self.ledger.record_for(event.event_id)

        def mutate(current: Optional[OrderNotifications]):
            current = current or OrderNotifications(order_id=order_id)
            return structs.replace(current, notifications=[*current.notifications, notification]), record

        try:
            await self.db.update(self.order_key(order_id), OrderNotifications, mutate)
        except RedisError as e:
            self.logger.error(f"Error storing notification for order {order_id}: {e}")
            return None, database_error("Failed to store notification", orderId=order_id)
        return notification, None

    async def send_custom(self, recipient: str, subject: str, message: str,
                          channel: str = templates.EMAIL) -> Result[NotificationValue]:
        if channel not in templates.CHANNELS:
            return None, validation_error(f"Unknown notification type: {channel}", type=channel)

        rendered = RenderedNotification(
            to=recipient,
            type=channel,
            content=templates.sanitize(message, channel),
            subject=subject,
        )
        notification = self._deliver(rendered, SENT)
        try:
            await self.db.set(self.custom_key(notification.id), notification)
        except RedisError as e:
            self.logger.error(f"Error storing custom notification: {e}")
            return None, database_error("Failed to store notification", recipient=recipient)
        return notification, None

    async def get_notifications(self, order_id: str) -> Result[list[NotificationValue]]:
        try:
            entry = await self.db.get(self.order_key(order_id), OrderNotifications)
        except RedisError as e:
            self.logger.error(f"Error getting notifications for order {order_id}: {e}")
            return [], database_error("Failed to get notifications", orderId=order_id)
        return (entry.notifications if entry else []), None
