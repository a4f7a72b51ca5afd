"""Consumer streaming core.

Turns blocking kafka-python polls into an infinite, pull-driven sequence
of decoded records. Nothing here runs in the background: advancing a
``RecordStream`` is what issues the network poll, on the advancing thread.
"""
from __future__ import annotations

import collections
import logging
import uuid
from typing import Any, Callable, Deque, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from kafka import KafkaConsumer

from kafunc.core.context import CONSUMER_CONFIG, DESERIALIZER, KAFKA_CONNECT
from kafunc.core.exceptions import DeserializationError
from kafunc.infra.kafka import client
from kafunc.infra.kafka.client import MAX_POLL_TIMEOUT_MS
from kafunc.models.records import InboundRecord
from kafunc.services.serde import nil_safe

log = logging.getLogger(__name__)

Topics = Union[str, Iterable[str]]


def make_consumer(group: str, config: Optional[Mapping[str, Any]] = None) -> KafkaConsumer:
    """Create a KafkaConsumer for *group*.

    Precedence, lowest first: bootstrap address + group id, then the
    bound ``CONSUMER_CONFIG`` overlay, then *config*. Connection errors
    from the client (e.g. ``NoBrokersAvailable``) propagate.
    """
    return client.make_consumer(
        client.merge_config(
            {"bootstrap.servers": KAFKA_CONNECT.get(), "group.id": group},
            CONSUMER_CONFIG.get(),
            config,
        )
    )


def subscribe(consumer: KafkaConsumer, topics: Topics) -> KafkaConsumer:
    """Subscribe *consumer* to *topics*. Any previous subscriptions are lost!"""
    if isinstance(topics, str):
        topics = [topics]
    return client.subscribe(consumer, topics)


def subscriptions(consumer: KafkaConsumer) -> Optional[set]:
    """Current subscriptions, or None if there are none."""
    return client.subscriptions(consumer)


def _decoder(deserializer: Optional[Callable[[Any], Any]]) -> Callable[[InboundRecord], InboundRecord]:
    decode = nil_safe(deserializer)

    def _decode(record: InboundRecord) -> InboundRecord:
        update: Dict[str, Any] = {}
        for field in ("key", "value"):
            raw = getattr(record, field)
            try:
                update[field] = decode(raw)
            except Exception as exc:
                raise DeserializationError(
                    raw, record.topic, record.partition, record.offset, field
                ) from exc
        return record.model_copy(update=update)

    return _decode


def _active_deserializer(deserializer: Optional[Callable[[Any], Any]]) -> Optional[Callable[[Any], Any]]:
    return deserializer if deserializer is not None else DESERIALIZER.get()


def deserialize_records(
    records: Iterable[InboundRecord],
    deserializer: Optional[Callable[[Any], Any]] = None,
) -> Iterator[InboundRecord]:
    """Lazily decode keys and values of every record in *records*."""
    decode = _decoder(_active_deserializer(deserializer))
    return map(decode, records)


def next_records(
    consumer: KafkaConsumer,
    timeout_ms: Optional[int] = None,
    deserializer: Optional[Callable[[Any], Any]] = None,
) -> List[InboundRecord]:
    """Block for the next batch of records; may return an empty list.

    Waits at most *timeout_ms* (default ``MAX_POLL_TIMEOUT_MS``, which
    effectively never times out). The whole batch is decoded before
    returning, so a bad payload raises ``DeserializationError`` here.
    """
    if timeout_ms is None:
        timeout_ms = MAX_POLL_TIMEOUT_MS
    return list(deserialize_records(client.poll(consumer, timeout_ms), deserializer))


class RecordStream:
    """Infinite iterator over the records a consumer receives.

    Each ``next()`` either pops a buffered record or performs exactly one
    blocking poll at a time until something arrives. The deserializer is
    captured on construction, so later rebindings don't affect this
    stream. A ``DeserializationError`` is raised from the ``next()`` that
    hit it; the stream itself stays usable and continues with the record
    after it.
    """

    def __init__(
        self,
        consumer: KafkaConsumer,
        deserializer: Optional[Callable[[Any], Any]] = None,
        timeout_ms: int = MAX_POLL_TIMEOUT_MS,
    ) -> None:
        self.consumer = consumer
        self.timeout_ms = timeout_ms
        self._decode = _decoder(_active_deserializer(deserializer))
        self._pending: Deque[InboundRecord] = collections.deque()

    def __iter__(self) -> "RecordStream":
        return self

    def __next__(self) -> InboundRecord:
        while not self._pending:
            self._pending.extend(client.poll(self.consumer, self.timeout_ms))
        return self._decode(self._pending.popleft())

    def values(self) -> Iterator[Any]:
        return record_values(self)


def consumer_records(
    consumer: KafkaConsumer,
    deserializer: Optional[Callable[[Any], Any]] = None,
) -> RecordStream:
    """Create an infinite lazy sequence of records consumed by *consumer*.

    Records carry topic, partition, timestamp, key, value, offset and
    checksum. Uses *deserializer*, or the bound ``DESERIALIZER`` at the
    time of this call.
    """
    return RecordStream(consumer, deserializer)


def record_values(records: Iterable[InboundRecord]) -> Iterator[Any]:
    """Lazy sequence of the values contained in *records*."""
    return (r.value for r in records)


def consumer_values(
    consumer: KafkaConsumer,
    deserializer: Optional[Callable[[Any], Any]] = None,
) -> Iterator[Any]:
    """Infinite lazy sequence of values; for when coordinates don't matter."""
    return record_values(consumer_records(consumer, deserializer))


def unique_group() -> str:
    return str(uuid.uuid4())


def topics_records(
    topics: Topics,
    group: Optional[str] = None,
    config: Optional[Mapping[str, Any]] = None,
    deserializer: Optional[Callable[[Any], Any]] = None,
) -> RecordStream:
    """Create a consumer, subscribe it to *topics* and stream its records.

    If *group* is not supplied a fresh unique group id is used, so the
    consumer shares committed offsets with nobody.
    """
    group = group or unique_group()
    log.debug("Streaming %s as group %s", topics, group)
    consumer = subscribe(make_consumer(group, config), topics)
    return consumer_records(consumer, deserializer)
