import logging
from typing import Optional

from quart import Quart

from common.config import ServiceConfig, load_config
from common.db.processed_events import ProcessedEventLedger
from common.db.redis_db import RedisDB
from common.db.util import wait_for_db
from common.errors import ServiceError
from common.http import register_error_handlers
from common.kafka.connection import BrokerConnection
from common.kafka.events_config import ORDER_SERVICE
from common.kafka.kafkaProducer import KafkaPublisher
from common.kafka.topology import topology_for_service
from common.otlp_grcp_config import configure_telemetry
from order.order_logic import OrderLogic
from order.routing.http import create_blueprint
from order.routing.kafka import OrderKafka


def create_app(config: Optional[ServiceConfig] = None) -> Quart:
    config = config or load_config(ORDER_SERVICE)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = Quart("order-service")

    broker = BrokerConnection(config, topology_for_service(ORDER_SERVICE, config.exchange_name))
    db = RedisDB.from_config(config)
    ledger = ProcessedEventLedger(db)
    logic = OrderLogic(app.logger, db, ledger)
    events = OrderKafka(app.logger, logic, broker, KafkaPublisher(broker, ORDER_SERVICE), ledger)

    async def broker_connected():
        return broker.connected and events.running

    app.register_blueprint(create_blueprint(logic, events, {"database": db.ping, "broker": broker_connected}))
    register_error_handlers(app)

    @app.before_serving
    async def startup():
        app.logger.info("Starting Order Service")
        app.extensions["telemetry"] = configure_telemetry(ORDER_SERVICE, config.otel_exporter_otlp_endpoint)
        try:
            await wait_for_db(db, config.broker_connect_retries, config.broker_connect_backoff)
            await broker.connect()
        except ServiceError as e:
            app.logger.error(f"{e.message}. Exiting.")
            raise SystemExit(1)
        await events.init()

    @app.after_serving
    async def shutdown():
        app.logger.info("Stopping Order Service")
        await events.close()
        await db.close()
        telemetry = app.extensions.get("telemetry")
        if telemetry:
            telemetry.shutdown()

    return app


app = create_app()

if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    hypercorn_logger = logging.getLogger('hypercorn.error')
    app.logger.handlers = hypercorn_logger.handlers
    app.logger.setLevel(hypercorn_logger.level)
