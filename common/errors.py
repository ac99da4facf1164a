from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple, TypeVar


class Category(str, Enum):
    VALIDATION = "validation"
    DOMAIN = "domain"
    INFRASTRUCTURE = "infrastructure"


class ErrorKind(Enum):
    #                          code                        status  category
    VALIDATION              = ("VALIDATION_ERROR",          400, Category.VALIDATION)
    INVALID_EVENT           = ("INVALID_EVENT",             400, Category.VALIDATION)
    ORDER_NOT_FOUND         = ("ORDER_NOT_FOUND",           404, Category.DOMAIN)
    ORDER_CANCELLATION      = ("ORDER_CANCELLATION_ERROR",  400, Category.DOMAIN)
    PRODUCT_NOT_FOUND       = ("PRODUCT_NOT_FOUND",         404, Category.DOMAIN)
    INSUFFICIENT_INVENTORY  = ("INSUFFICIENT_INVENTORY",    400, Category.DOMAIN)
    EVENT_ALREADY_PROCESSED = ("EVENT_ALREADY_PROCESSED",   409, Category.DOMAIN)
    DATABASE                = ("DATABASE_ERROR",            500, Category.INFRASTRUCTURE)
    MESSAGE_QUEUE           = ("MESSAGE_QUEUE_ERROR",       500, Category.INFRASTRUCTURE)
    CONNECTION              = ("CONNECTION_ERROR",          503, Category.INFRASTRUCTURE)
    TOPOLOGY                = ("TOPOLOGY_ERROR",            500, Category.INFRASTRUCTURE)
    INTERNAL                = ("INTERNAL_ERROR",            500, Category.INFRASTRUCTURE)

    def __init__(self, code: str, status_code: int, category: Category):
        self.code = code
        self.status_code = status_code
        self.category = category


class ServiceError(Exception):
    """A failure tagged with its kind and the structured context it happened in.

    Handling boundaries match on ``err.kind`` (or ``err.category``) instead of on
    exception subclasses. Business-logic classes usually *return* these inside a
    ``Result`` tuple; infrastructure failures are raised.
    """

    def __init__(self, kind: ErrorKind, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = context or {}

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def category(self) -> Category:
        return self.kind.category

    @property
    def is_infrastructure(self) -> bool:
        return self.kind.category is Category.INFRASTRUCTURE

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.name,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
        }

    def to_response(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            error["details"] = self.context
        return {"error": error, "timestamp": datetime.now(timezone.utc).isoformat()}

    def __repr__(self):
        return f"ServiceError({self.kind.name}, {self.message!r}, {self.context!r})"


T = TypeVar("T")

Result = Tuple[T, Optional[ServiceError]]


def validation_error(message: str, **context) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION, message, context)


def invalid_event(event_type: str, reason: str) -> ServiceError:
    return ServiceError(ErrorKind.INVALID_EVENT, f"Invalid event {event_type}: {reason}",
                        {"eventType": event_type, "reason": reason})


def order_not_found(order_id: str, message: Optional[str] = None) -> ServiceError:
    return ServiceError(ErrorKind.ORDER_NOT_FOUND, message or f"Order not found: {order_id}",
                        {"orderId": order_id})


def order_cancellation(order_id: str, reason: str) -> ServiceError:
    return ServiceError(ErrorKind.ORDER_CANCELLATION, f"Cannot cancel order: {reason}",
                        {"orderId": order_id, "reason": reason})


def product_not_found(product_id: str) -> ServiceError:
    return ServiceError(ErrorKind.PRODUCT_NOT_FOUND, f"Product not found: {product_id}",
                        {"productId": product_id})


def insufficient_inventory(product_id: str, requested: int, available: int) -> ServiceError:
    return ServiceError(
        ErrorKind.INSUFFICIENT_INVENTORY,
        f"Insufficient inventory for product {product_id}: requested {requested}, available {available}",
        {"productId": product_id, "requested": requested, "available": available},
    )


def database_error(message: str, **context) -> ServiceError:
    return ServiceError(ErrorKind.DATABASE, message, context)


def message_queue_error(message: str, **context) -> ServiceError:
    return ServiceError(ErrorKind.MESSAGE_QUEUE, message, context)


def connection_error(service: str, **context) -> ServiceError:
    return ServiceError(ErrorKind.CONNECTION, f"Failed to connect to {service}", {"service": service, **context})


def topology_error(message: str, **context) -> ServiceError:
    return ServiceError(ErrorKind.TOPOLOGY, message, context)


def normalize_error(error: BaseException) -> ServiceError:
    if isinstance(error, ServiceError):
        return error
    return ServiceError(ErrorKind.INTERNAL, str(error) or "Unknown error occurred",
                        {"originalError": type(error).__name__})
