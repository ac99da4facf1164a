import os
from typing import Mapping, Optional

import msgspec
from msgspec import Struct


class ServiceConfig(Struct, frozen=True, kw_only=True):
    service_name: str
    kafka_bootstrap_servers: str = "localhost:9092"
    exchange_name: str = "ecommerce_events"
    topic_partitions: int = 3
    topic_replication_factor: int = 1
    broker_connect_retries: int = 10
    broker_connect_backoff: float = 3.0
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_sentinel_hosts: Optional[str] = None
    redis_service_name: str = "mymaster"
    otel_exporter_otlp_endpoint: Optional[str] = None
    log_level: str = "INFO"
    dlq_replay_timeout: float = 30.0

    @property
    def dead_letter_exchange(self) -> str:
        return f"{self.exchange_name}_dlx"

    @property
    def sentinel_hosts(self) -> list[tuple[str, int]]:
        if not self.redis_sentinel_hosts:
            return []
        hosts = []
        for host in self.redis_sentinel_hosts.split(","):
            name, _, port = host.strip().partition(":")
            hosts.append((name, int(port or 26379)))
        return hosts


def load_config(service_name: str, environ: Mapping[str, str] = os.environ) -> ServiceConfig:
    """Build the service configuration from upper-cased environment variables.

    Only variables naming a ``ServiceConfig`` field are read; empty values are
    ignored so an unset ``REDIS_PASSWORD=`` in a compose file keeps the default.
    """
    values: dict[str, str] = {"service_name": service_name}
    for field in ServiceConfig.__struct_fields__:
        if field == "service_name":
            continue
        raw = environ.get(field.upper())
        if raw:
            values[field] = raw
    return msgspec.convert(values, type=ServiceConfig, strict=False)
