"""Scoped local ZooKeeper + Kafka for tests and experiments.

    with with_zookeeper():
        with with_kafka({"num.partitions": 1}) as connect:
            send_record(producer_record("t", 42)).get()

Each scope stops what it started and removes the temporary directories
it created, on every exit path, including exceptions from the body.
"""
from __future__ import annotations

import contextlib
import logging
import shutil
import tempfile
from typing import Any, Dict, Iterator, Mapping, Optional

from kafunc.core.config import settings
from kafunc.core.context import KAFKA_CONNECT, ZOOKEEPER_CONNECT
from kafunc.core.exceptions import ConfigurationError
from kafunc.infra.local.broker import KafkaServer
from kafunc.infra.local.properties import property_key, to_properties
from kafunc.infra.local.zookeeper import ZooKeeperServer

log = logging.getLogger(__name__)


def make_kafka_props(config: Optional[Mapping[str, Any]], temp_dir: Optional[str]) -> Dict[str, str]:
    """Merge user properties over the defaults for a single local broker.

    Args:
      * config   - map of configuration properties; wins over defaults
      * temp_dir - directory to use if ``log.dir`` isn't specified
    """
    default = {
        "log.dir": temp_dir,
        "port": "0",
        "zookeeper.connect": ZOOKEEPER_CONNECT.get(),
        "broker.id": "0",
        "offsets.topic.replication.factor": "1",
        "transaction.state.log.replication.factor": "1",
        "transaction.state.log.min.isr": "1",
        "group.initial.rebalance.delay.ms": "0",
    }
    props = to_properties({**default, **to_properties(config or {})})
    if not props.get("zookeeper.connect"):
        raise ConfigurationError(
            "No ZooKeeper to register with; use with_zookeeper() or set zookeeper.connect"
        )
    return props


def _stop(server: Any, temp_dir: Optional[str], quiet: bool = False) -> None:
    try:
        server.shutdown()
        server.await_shutdown()
    except Exception:
        if not quiet:
            raise
        log.exception("Failed to stop %r while another error was propagating", server)
    finally:
        if temp_dir is not None:
            shutil.rmtree(temp_dir, ignore_errors=True)
            log.debug("Removed %s", temp_dir)


@contextlib.contextmanager
def _running(server: Any, temp_dir: Optional[str]) -> Iterator[Any]:
    """Start *server*; always stop it and remove *temp_dir* (if owned) on exit."""
    try:
        server.startup()
        yield server
    except BaseException:
        _stop(server, temp_dir, quiet=True)
        raise
    else:
        _stop(server, temp_dir)


@contextlib.contextmanager
def with_zookeeper() -> Iterator[str]:
    """Start a ZooKeeper for the duration of the block.

    Binds ``ZOOKEEPER_CONNECT`` to its ``host:port`` inside the block and
    yields the same string.
    """
    temp_dir = tempfile.mkdtemp(prefix="zookeeper")
    try:
        zookeeper = ZooKeeperServer(temp_dir)
    except BaseException:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise
    with _running(zookeeper, temp_dir):
        connect = f"{settings.local_host}:{zookeeper.bound_port()}"
        log.info("ZooKeeper listening at %s (data in %s)", connect, temp_dir)
        with ZOOKEEPER_CONNECT.bound(connect):
            yield connect


def _has_log_dir(config: Mapping[str, Any]) -> bool:
    keys = {property_key(k) for k, v in config.items() if v is not None}
    return bool(keys & {"log.dir", "log.dirs"})


@contextlib.contextmanager
def with_kafka(config: Optional[Mapping[str, Any]] = None) -> Iterator[str]:
    """Start a local Kafka broker for the duration of the block.

    Registers with the bound ``ZOOKEEPER_CONNECT`` unless *config* names a
    ``zookeeper.connect``. Binds ``KAFKA_CONNECT`` to the broker's real
    address inside the block and yields it. A temporary log directory is
    created (and later deleted) only when *config* doesn't provide one.
    """
    config = dict(config or {})
    temp_dir = None if _has_log_dir(config) else tempfile.mkdtemp(prefix="kafka")
    try:
        props = make_kafka_props(config, temp_dir)
        kafka = KafkaServer(props)
    except BaseException:
        if temp_dir is not None:
            shutil.rmtree(temp_dir, ignore_errors=True)
        raise
    owned = temp_dir if temp_dir is not None and props.get("log.dir") == temp_dir else None
    with _running(kafka, owned):
        connect = f"{settings.local_host}:{kafka.bound_port()}"
        log.info("Kafka listening at %s (zookeeper %s)", connect, props["zookeeper.connect"])
        with KAFKA_CONNECT.bound(connect):
            yield connect
