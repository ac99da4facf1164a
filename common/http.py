import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

import msgspec
from quart import Quart, jsonify, request
from werkzeug.exceptions import HTTPException

from common.errors import ServiceError, normalize_error, validation_error

S = TypeVar("S")

INTERNAL_ERROR_BODY = {"error": {"code": "INTERNAL_ERROR", "message": "Internal Server Error"}}


async def decode_body(type: type[S]) -> S:
    data = await request.get_data()
    try:
        return msgspec.json.decode(data or b"{}", type=type)
    except msgspec.DecodeError as e:
        raise validation_error(str(e)) from e


def to_builtins(value):
    return msgspec.to_builtins(value)


def error_response(err: ServiceError):
    if err.is_infrastructure:
        # never leak internal detail
        return jsonify({**INTERNAL_ERROR_BODY, "timestamp": _now()}), 500
    return jsonify(err.to_response()), err.status_code


def register_error_handlers(app: Quart):

    @app.errorhandler(ServiceError)
    async def handle_service_error(err: ServiceError):
        if err.is_infrastructure:
            logging.error(f"Error occurred on {request.method} {request.path}: {err.to_dict()}")
        return error_response(err)

    @app.errorhandler(Exception)
    async def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify({"error": {"code": e.name.upper().replace(" ", "_"), "message": e.description},
                            "timestamp": _now()}), e.code
        logging.exception(f"Unhandled error on {request.method} {request.path}")
        return error_response(normalize_error(e))


async def health_report(service: str, checks: dict[str, Callable[[], Awaitable[bool]]]):
    health = {
        "status": "healthy",
        "timestamp": _now(),
        "service": service,
        "checks": {},
    }
    for name, check in checks.items():
        try:
            health["checks"][name] = "connected" if await check() else "disconnected"
        except Exception as e:
            logging.warning(f"Health check {name} failed: {e}")
            health["checks"][name] = "error"
        if health["checks"][name] != "connected":
            health["status"] = "unhealthy"
    return jsonify(health), 200 if health["status"] == "healthy" else 503


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
