"""Configuration of the order service, loaded from YAML or JSON."""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from seckillmall.rpc_clients import (
    PRODUCT_SERVICE_DEFAULT_PORT,
    SECKILL_SERVICE_DEFAULT_PORT,
    resolve_endpoints,
)

SERVICE_MODES = ("dev", "test", "rt", "pre", "pro")
DEFAULT_MODE = "pro"


@dataclass(frozen=True)
class RabbitMQConfig:
    """Broker connection and routing of the seckill order queue."""

    url: str = ""
    exchange: str = ""
    routing_key: str = ""
    consumer_tag: str = ""


@dataclass(frozen=True)
class FallbackConfig:
    """Direct endpoints used when service discovery is not configured."""

    product_service_endpoint: str = ""
    seckill_service_endpoint: str = ""


@dataclass(frozen=True)
class OrderServiceConfig:
    """Everything the order service needs to start."""

    name: str
    listen_on: str
    data_source: str
    mode: str = DEFAULT_MODE
    rabbitmq: RabbitMQConfig = field(default_factory=RabbitMQConfig)
    product_service_etcd_hosts: tuple = ()
    seckill_service_etcd_hosts: tuple = ()
    fallback: FallbackConfig = field(default_factory=FallbackConfig)

    @classmethod
    def from_dict(cls, data):
        """Build a configuration from a mapping; keys match case-insensitively."""
        root = _lower_keys(data, "config")
        mode = _string(root, "mode", default=DEFAULT_MODE)
        if mode not in SERVICE_MODES:
            raise ValueError(f"invalid mode {mode!r}, expected one of {', '.join(SERVICE_MODES)}")

        mysql = _section(root, "mysql")
        rabbit = _section(root, "rabbitmq")
        fallback = _section(root, "fallback")
        return cls(
            name=_string(root, "name", required=True),
            listen_on=_string(root, "listenon", required=True),
            data_source=_string(mysql, "datasource", required=True, where="MySQL."),
            mode=mode,
            rabbitmq=RabbitMQConfig(
                url=_string(rabbit, "url"),
                exchange=_string(rabbit, "exchange"),
                routing_key=_string(rabbit, "routingkey"),
                consumer_tag=_string(rabbit, "consumertag"),
            ),
            product_service_etcd_hosts=_etcd_hosts(root, "productservice"),
            seckill_service_etcd_hosts=_etcd_hosts(root, "seckillservice"),
            fallback=FallbackConfig(
                product_service_endpoint=_string(fallback, "productserviceendpoint"),
                seckill_service_endpoint=_string(fallback, "seckillserviceendpoint"),
            ),
        )

    def product_endpoints(self):
        """Direct endpoints for the product service; empty when discovered through etcd."""
        return resolve_endpoints(
            self.product_service_etcd_hosts,
            self.fallback.product_service_endpoint,
            PRODUCT_SERVICE_DEFAULT_PORT,
        )

    def seckill_endpoints(self):
        """Direct endpoints for the seckill service; empty when discovered through etcd."""
        return resolve_endpoints(
            self.seckill_service_etcd_hosts,
            self.fallback.seckill_service_endpoint,
            SECKILL_SERVICE_DEFAULT_PORT,
        )


def _lower_keys(data, where):
    if not isinstance(data, Mapping):
        raise ValueError(f"{where} must be a mapping")
    return {str(key).lower(): value for key, value in data.items()}


def _section(root, key):
    value = root.get(key)
    if value is None:
        return {}
    return _lower_keys(value, key)


def _string(section, key, required=False, default="", where=""):
    value = section.get(key)
    if value is None:
        if required:
            raise ValueError(f"missing required config field {where}{key}")
        return default
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValueError(f"config field {where}{key} must be a string")
    return str(value)


def _etcd_hosts(root, key):
    etcd = _section(_section(root, key), "etcd")
    hosts = etcd.get("hosts") or ()
    if isinstance(hosts, str) or not all(isinstance(h, str) for h in hosts):
        raise ValueError(f"{key}.Etcd.Hosts must be a list of strings")
    return tuple(hosts)


def load_config(path):
    """Read a YAML or JSON configuration file."""
    path = Path(path)
    suffix = path.suffix.lower()
    with path.open("r", encoding="utf-8") as handle:
        if suffix == ".json":
            data = json.load(handle)
        elif suffix in (".yaml", ".yml"):
            data = yaml.safe_load(handle)
        else:
            raise ValueError(f"unrecognized config file type: {path}")
    return OrderServiceConfig.from_dict(data)