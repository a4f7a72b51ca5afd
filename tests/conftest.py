import collections
import functools
from types import SimpleNamespace

import pytest
from kafka.errors import KafkaError, KafkaTimeoutError
from kafka.structs import TopicPartition

from kafunc.infra.kafka import client


def consumer_record(topic, partition, offset, value, key=None, timestamp=1_700_000_000_000, checksum=None):
    """Shape-compatible stand-in for kafka-python's ConsumerRecord."""
    return SimpleNamespace(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=timestamp,
        key=key,
        value=value,
        checksum=checksum,
    )


def batch(*records):
    """Group records the way KafkaConsumer.poll() returns them."""
    out = collections.OrderedDict()
    for r in records:
        out.setdefault(TopicPartition(r.topic, r.partition), []).append(r)
    return dict(out)


class FakeConsumer:
    def __init__(self, **config):
        self.config = config
        self._subscription = None
        self.batches = collections.deque()
        self.poll_calls = []
        self.closed = False

    def subscribe(self, topics=(), pattern=None, listener=None):
        self._subscription = set(topics)

    def unsubscribe(self):
        self._subscription = set()

    def subscription(self):
        return None if self._subscription is None else set(self._subscription)

    def poll(self, timeout_ms=0, max_records=None, update_offsets=True):
        self.poll_calls.append(timeout_ms)
        if self.batches:
            return self.batches.popleft()
        return {}

    def close(self, autocommit=True):
        self.closed = True


class FakeFuture:
    """Already-resolved stand-in for FutureRecordMetadata."""

    def __init__(self, metadata=None, exception=None, done=True):
        self.value = metadata
        self.exception = exception
        self.is_done = done
        self.get_calls = 0

    def get(self, timeout=None):
        self.get_calls += 1
        if not self.is_done:
            raise KafkaTimeoutError("Timeout after waiting for %s secs." % (timeout,))
        if self.exception is not None:
            raise self.exception
        return self.value

    def add_errback(self, f, *args, **kwargs):
        if args or kwargs:
            f = functools.partial(f, *args, **kwargs)
        if self.is_done and self.exception is not None:
            f(self.exception)
        return self


class FakeProducer:
    def __init__(self, **config):
        self.config = config
        self.sent = []
        self.offsets = collections.defaultdict(int)
        self.reject_topics = set()
        self.raise_topics = set()
        self.invalid_topics = set()
        self.pending_topics = set()
        self.futures = []
        self.flushed = False
        self.closed = False

    def send(self, topic, value=None, key=None, headers=None, partition=None, timestamp_ms=None):
        # argument checks kafka-python makes before anything is queued
        if value is None and key is None:
            raise ValueError("Need at least one: key or value")
        if topic in self.invalid_topics:
            raise ValueError("Invalid topic: %s" % topic)
        for payload in (key, value):
            if payload is not None and not isinstance(payload, (bytes, bytearray, memoryview)):
                raise TypeError("Unsupported type for value: %s" % type(payload))
        if topic in self.raise_topics:
            raise KafkaTimeoutError("Failed to update metadata")
        self.sent.append(
            SimpleNamespace(topic=topic, value=value, key=key, partition=partition, timestamp_ms=timestamp_ms)
        )
        if topic in self.reject_topics:
            future = FakeFuture(exception=KafkaError("rejected"))
        elif topic in self.pending_topics:
            future = FakeFuture(done=False)
        else:
            p = partition or 0
            offset = self.offsets[(topic, p)]
            self.offsets[(topic, p)] += 1
            meta = SimpleNamespace(
                topic=topic,
                partition=p,
                offset=offset,
                timestamp=timestamp_ms if timestamp_ms is not None else 1_700_000_000_000 + offset,
                checksum=None,
            )
            future = FakeFuture(meta)
        self.futures.append(future)
        return future

    def flush(self, timeout=None):
        self.flushed = True

    def close(self, timeout=None):
        self.closed = True


@pytest.fixture
def fake_kafka(monkeypatch):
    """Replace kafka-python's client classes; record every instance created."""
    created = SimpleNamespace(consumers=[], producers=[])

    def _consumer(**config):
        c = FakeConsumer(**config)
        created.consumers.append(c)
        return c

    def _producer(**config):
        p = FakeProducer(**config)
        created.producers.append(p)
        return p

    monkeypatch.setattr(client, "KafkaConsumer", _consumer)
    monkeypatch.setattr(client, "KafkaProducer", _producer)
    return created
