"""Thin adapter over the kafka-python consumer/producer APIs."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from kafka import KafkaConsumer, KafkaProducer  # kafka-python

from kafunc.models.records import InboundRecord, OutboundRecord

log = logging.getLogger(__name__)

# Largest poll timeout the client's selector accepts; ~24.8 days.
MAX_POLL_TIMEOUT_MS = 2**31 - 1


def config_key(key: str) -> str:
    """'auto.offset.reset' / 'auto-offset-reset' -> 'auto_offset_reset'."""
    return str(key).strip().replace(".", "_").replace("-", "_")


def merge_config(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Merge config layers in increasing precedence, normalizing keys first."""
    out: Dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for k, v in layer.items():
            out[config_key(k)] = v
    return out


# ---------- Consumer ----------

def make_consumer(config: Mapping[str, Any]) -> KafkaConsumer:
    """Open a consumer session. Raw bytes in, raw bytes out."""
    kw = merge_config(config)
    log.debug("Opening consumer group=%s bootstrap=%s",
              kw.get("group_id"), kw.get("bootstrap_servers"))
    return KafkaConsumer(**kw)


def subscribe(consumer: KafkaConsumer, topics: Iterable[str]) -> KafkaConsumer:
    consumer.subscribe(topics=list(topics))
    return consumer


def subscriptions(consumer: KafkaConsumer) -> Optional[set]:
    subs = consumer.subscription()
    return set(subs) if subs else None


def to_inbound(record: Any) -> InboundRecord:
    """Convert a kafka-python ConsumerRecord to an InboundRecord."""
    return InboundRecord(
        key=record.key,
        value=record.value,
        partition=record.partition,
        topic=record.topic,
        timestamp=record.timestamp,
        offset=record.offset,
        checksum=getattr(record, "checksum", None),
    )


def poll(consumer: KafkaConsumer, timeout_ms: int) -> List[InboundRecord]:
    """One blocking poll, flattened in partition-then-offset order."""
    batch = consumer.poll(timeout_ms=timeout_ms)
    if not batch:
        return []
    out: List[InboundRecord] = []
    for _, records in batch.items():
        out.extend(to_inbound(r) for r in records)
    log.debug("Polled %d record(s) from %d partition(s)", len(out), len(batch))
    return out


# ---------- Producer ----------

def make_producer(config: Mapping[str, Any]) -> KafkaProducer:
    kw = merge_config(config)
    log.debug("Opening producer bootstrap=%s", kw.get("bootstrap_servers"))
    return KafkaProducer(**kw)


def send(producer: KafkaProducer, record: OutboundRecord):
    """Dispatch an (already encoded) record; returns kafka-python's future."""
    return producer.send(
        record.topic,
        value=record.value,
        key=record.key,
        partition=record.partition,
        timestamp_ms=record.timestamp,
    )


def record_metadata(meta: Any) -> Dict[str, Any]:
    return {
        "topic": meta.topic,
        "partition": meta.partition,
        "timestamp": meta.timestamp,
        "offset": meta.offset,
        "checksum": getattr(meta, "checksum", None),
    }
