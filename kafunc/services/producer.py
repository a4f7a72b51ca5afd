"""Producer dispatch core: serialize, send, resolve metadata onto the record."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from kafunc.core.context import KAFKA_CONNECT, PRODUCER_CONFIG, SERIALIZER
from kafunc.core.exceptions import SerializationError
from kafunc.infra.kafka import client
from kafunc.models.records import OutboundRecord, SentRecord
from kafunc.services.serde import identity, nil_safe

log = logging.getLogger(__name__)

_PENDING = object()

# kafka-python rejects bad arguments to send() with ValueError/TypeError
# (no key and no value, invalid topic, non-bytes payload)
SEND_ERRORS = (KafkaError, ValueError, TypeError)


def make_producer(config: Optional[Mapping[str, Any]] = None) -> KafkaProducer:
    """Create a KafkaProducer.

    Precedence, lowest first: bootstrap address, then the bound
    ``PRODUCER_CONFIG`` overlay, then *config*.
    """
    return client.make_producer(
        client.merge_config(
            {"bootstrap.servers": KAFKA_CONNECT.get()},
            PRODUCER_CONFIG.get(),
            config,
        )
    )


def _encoder(serializer: Optional[Callable[[Any], Any]]) -> Callable[[OutboundRecord], OutboundRecord]:
    active = serializer if serializer is not None else SERIALIZER.get()
    encode_key = nil_safe(active)
    encode_value = active if active is not None else identity

    def _encode(record: OutboundRecord) -> OutboundRecord:
        update = {}
        try:
            update["key"] = encode_key(record.key)
        except Exception as exc:
            raise SerializationError(record.topic, "key") from exc
        # a keyed None is a tombstone; an unkeyed None is encoded like any value
        if record.value is None and record.key is not None:
            update["value"] = None
        else:
            try:
                update["value"] = encode_value(record.value)
            except Exception as exc:
                raise SerializationError(record.topic, "value") from exc
        return record.model_copy(update=update)

    return _encode


def serialize_record(
    record: OutboundRecord,
    serializer: Optional[Callable[[Any], Any]] = None,
) -> OutboundRecord:
    """Serialize key and value of a record to prepare for sending."""
    return _encoder(serializer)(record)


def serialize_records(
    records: Iterable[OutboundRecord],
    serializer: Optional[Callable[[Any], Any]] = None,
) -> Iterator[OutboundRecord]:
    """Lazily serialize keys and values for all records."""
    return map(_encoder(serializer), records)


class DeferredSend:
    """Handle on an in-flight send.

    ``get()`` blocks until the broker acknowledges, then returns the
    original record overlaid with topic/partition/offset/timestamp/checksum.
    The outcome (result or error) is computed once and cached.
    """

    def __init__(
        self,
        record: OutboundRecord,
        future: Any = None,
        error: Optional[BaseException] = None,
        producer: Optional[KafkaProducer] = None,
    ) -> None:
        self.record = record
        self._future = future
        self._error = error
        self._result: Any = _PENDING
        self._lock = threading.Lock()
        # held so a producer opened just for this send outlives it
        self._producer = producer

    def done(self) -> bool:
        if self._result is not _PENDING or self._error is not None:
            return True
        return self._future is not None and self._future.is_done

    def get(self, timeout: Optional[float] = None) -> SentRecord:
        with self._lock:
            if self._result is _PENDING and self._error is None:
                try:
                    meta = self._future.get(timeout=timeout)
                except KafkaError as exc:
                    if not self._future.is_done:
                        # our own wait timed out; the send is still in flight
                        raise
                    self._error = exc
                else:
                    self._result = SentRecord(
                        **{**dict(self.record), **client.record_metadata(meta)}
                    )
                self._producer = None
            if self._error is not None:
                raise self._error
            return self._result

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<DeferredSend {self.record.topic} {state}>"


def _dispatch(
    record: OutboundRecord,
    producer: KafkaProducer,
    encode: Callable[[OutboundRecord], OutboundRecord],
    owned: bool = False,
) -> DeferredSend:
    encoded = encode(record)
    keep = producer if owned else None
    try:
        future = client.send(producer, encoded)
    except SEND_ERRORS as exc:
        return DeferredSend(record, error=exc, producer=keep)
    return DeferredSend(record, future=future, producer=keep)


def send_record(
    record: OutboundRecord,
    producer: Optional[KafkaProducer] = None,
    serializer: Optional[Callable[[Any], Any]] = None,
) -> DeferredSend:
    """Send *record* to its destination topic/partition.

    Returns a ``DeferredSend``; asynchronous callers can ignore it,
    synchronous callers call ``.get()`` to wait for the broker.

    Without *producer* a brand-new KafkaProducer (and broker session) is
    opened for this one record. Pass a producer when sending more than once.
    """
    owned = producer is None
    if owned:
        producer = make_producer()
    return _dispatch(record, producer, _encoder(serializer), owned=owned)


def send_records(
    records: Iterable[OutboundRecord],
    producer: Optional[KafkaProducer] = None,
    serializer: Optional[Callable[[Any], Any]] = None,
) -> Iterator[SentRecord]:
    """Send every record now; resolve each result lazily when read.

    All sends are issued before this returns, so the client can pipeline
    them. Every pending handle is kept in memory until read: do not use
    this for large or infinite sequences, use ``send_all_records``.
    """
    owned = producer is None
    if owned:
        producer = make_producer()
    encode = _encoder(serializer)
    deferred: List[DeferredSend] = [
        _dispatch(r, producer, encode, owned=owned) for r in records
    ]
    log.debug("Dispatched %d record(s)", len(deferred))
    return (d.get() for d in deferred)


def send_all_records(
    records: Iterable[OutboundRecord],
    producer: Optional[KafkaProducer] = None,
    serializer: Optional[Callable[[Any], Any]] = None,
) -> None:
    """Like ``send_records`` but keeps no results; fine for infinite input.

    Records are sent as *records* is drained. A failing record is logged
    and skipped; it never stops the records after it.
    """
    owned = producer is None
    if owned:
        producer = make_producer()
    encode = _encoder(serializer)
    sent = failed = 0
    try:
        for record in records:
            try:
                future = client.send(producer, encode(record))
            except (*SEND_ERRORS, SerializationError) as exc:
                failed += 1
                log.warning("Send to %s failed: %s", record.topic, exc)
                continue
            future.add_errback(_log_send_failure, record.topic)
            sent += 1
    finally:
        if owned:
            producer.flush()
            producer.close()
    log.debug("Dispatched %d record(s), %d failed before dispatch", sent, failed)


def _log_send_failure(topic: str, exc: BaseException) -> None:
    log.warning("Send to %s failed: %s", topic, exc)
