import logging
import re
from typing import Optional

from msgspec import Struct

EMAIL = "email"
SMS = "sms"
PUSH = "push"
CHANNELS = (EMAIL, SMS, PUSH)

# longest content each channel accepts
CHANNEL_LIMITS = {SMS: 160, PUSH: 100}

VARIABLE = re.compile(r"\{\{(\w+)\}\}")


class Template(Struct):
    name: str
    type: str
    content: str
    subject: Optional[str] = None
    variables: list[str] = []


class RenderedNotification(Struct):
    to: str
    type: str
    content: str
    subject: Optional[str] = None


ORDER_SUCCESS = "order-success"
ORDER_FAILURE = "order-failure"

TEMPLATES = {
    ORDER_SUCCESS: Template(
        name=ORDER_SUCCESS,
        type=EMAIL,
        subject="Order Confirmed",
        content="Order {{orderId}} processed successfully.",
        variables=["orderId"],
    ),
    ORDER_FAILURE: Template(
        name=ORDER_FAILURE,
        type=EMAIL,
        subject="Order Failed",
        content="Order {{orderId}} failed: {{reason}}",
        variables=["orderId", "reason"],
    ),
}


def substitute(text: str, variables: dict) -> str:
    """Replace ``{{name}}`` placeholders. Unknown names are left in place."""

    def replace(match):
        value = variables.get(match.group(1))
        if value is None:
            logging.warning(f"Variable {match.group(1)} not found in template")
            return match.group(0)
        return str(value)

    return VARIABLE.sub(replace, text)


def sanitize(content: str, channel: str) -> str:
    limit = CHANNEL_LIMITS.get(channel)
    if limit is not None and len(content) > limit:
        return content[:limit - 3] + "..."
    return content.strip()


def render(template: Template, variables: dict, recipient: str) -> RenderedNotification:
    subject = substitute(template.subject, variables) if template.subject else None
    return RenderedNotification(
        to=recipient,
        type=template.type,
        content=sanitize(substitute(template.content, variables), template.type),
        subject=subject,
    )
