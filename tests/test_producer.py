import logging

import pytest
from kafka.errors import KafkaError, KafkaTimeoutError

from conftest import FakeProducer
from kafunc.core.context import binding
from kafunc.core.exceptions import SerializationError
from kafunc.models.records import SentRecord, producer_record
from kafunc.services import producer as kp
from kafunc.services import serde


def test_make_producer_merges_config_in_precedence_order(fake_kafka):
    with binding(kafka_connect="k1:9092", producer_config={"acks": 1, "linger.ms": 20}):
        kp.make_producer({"acks": "all"})
    cfg = fake_kafka.producers[0].config
    assert cfg == {"bootstrap_servers": "k1:9092", "acks": "all", "linger_ms": 20}


def test_serialize_record_encodes_key_and_value_only():
    r = producer_record("t", {"a": 1}, "k", 3, 99)
    encoded = kp.serialize_record(r, serde.json_serialize)
    assert encoded == producer_record("t", b'{"a":1}', b'"k"', 3, 99)


def test_serialize_record_leaves_missing_key_absent():
    encoded = kp.serialize_record(producer_record("t", 1), serde.pickle_serialize)
    assert encoded.key is None
    assert serde.pickle_deserialize(encoded.value) == 1


def test_serialize_record_uses_bound_serializer():
    with binding(serializer=serde.json_serialize):
        assert kp.serialize_record(producer_record("t", [1])).value == b"[1]"
    with binding(serializer=None):
        assert kp.serialize_record(producer_record("t", b"raw")).value == b"raw"


def test_serialize_records_is_lazy():
    calls = []

    def ser(v):
        calls.append(v)
        return b"x"

    out = kp.serialize_records([producer_record("t", 1), producer_record("t", 2)], ser)
    assert calls == []
    next(out)
    assert calls == [1]


def test_serializer_failure_names_the_field():
    with pytest.raises(SerializationError) as info:
        kp.serialize_record(producer_record("t", object()), serde.json_serialize)
    assert info.value.field == "value"
    assert info.value.topic == "t"


def test_send_record_merges_metadata_onto_original_record():
    producer = FakeProducer()
    record = producer_record("t", {"v": 1}, key="k")

    deferred = kp.send_record(record, producer, serde.json_serialize)
    sent = deferred.get()

    assert isinstance(sent, SentRecord)
    assert sent.topic == "t"
    assert sent.value == {"v": 1}
    assert sent.key == "k"
    assert sent.partition == 0 and sent.offset == 0 and sent.timestamp >= 0
    assert producer.sent[0].value == b'{"v":1}'
    assert serde.json_deserialize(producer.sent[0].value) == record.value


def test_send_record_passes_partition_and_timestamp():
    producer = FakeProducer()
    sent = kp.send_record(producer_record("t", b"v", None, 2, 1234), producer, serde.identity).get()
    assert producer.sent[0].partition == 2
    assert producer.sent[0].timestamp_ms == 1234
    assert (sent.partition, sent.timestamp) == (2, 1234)


def test_deferred_is_resolved_once():
    producer = FakeProducer()
    deferred = kp.send_record(producer_record("t", b"v"), producer, serde.identity)
    assert deferred.get() is deferred.get()
    assert producer.futures[0].get_calls == 1
    assert deferred.done()


def test_failed_send_raises_when_forced_and_stays_failed():
    producer = FakeProducer()
    producer.reject_topics.add("bad")
    deferred = kp.send_record(producer_record("bad", b"v"), producer, serde.identity)

    with pytest.raises(KafkaError):
        deferred.get()
    with pytest.raises(KafkaError):
        deferred.get()
    assert producer.futures[0].get_calls == 1


def test_synchronous_send_error_surfaces_when_forced():
    producer = FakeProducer()
    producer.raise_topics.add("down")
    deferred = kp.send_record(producer_record("down", b"v"), producer, serde.identity)
    assert deferred.done()
    with pytest.raises(KafkaTimeoutError):
        deferred.get()


def test_wait_timeout_is_not_cached():
    producer = FakeProducer()
    producer.pending_topics.add("slow")
    deferred = kp.send_record(producer_record("slow", b"v"), producer, serde.identity)

    with pytest.raises(KafkaTimeoutError):
        deferred.get(timeout=0.01)
    assert not deferred.done()
    with pytest.raises(KafkaTimeoutError):
        deferred.get(timeout=0.01)
    assert producer.futures[0].get_calls == 2


def test_send_record_without_producer_opens_one_per_call(fake_kafka):
    with binding(serializer=serde.pickle_serialize):
        kp.send_record(producer_record("t", 1)).get()
        kp.send_record(producer_record("t", 2)).get()
    assert len(fake_kafka.producers) == 2


def test_send_records_dispatches_everything_before_resolving(fake_kafka):
    producer = FakeProducer()
    records = [producer_record("t", i) for i in range(4)]

    results = kp.send_records(records, producer, serde.pickle_serialize)

    assert len(producer.sent) == 4
    assert all(f.get_calls == 0 for f in producer.futures)
    first = next(results)
    assert first.value == 0 and first.offset == 0
    assert [f.get_calls for f in producer.futures] == [1, 0, 0, 0]
    rest = list(results)
    assert [r.value for r in rest] == [1, 2, 3]
    assert [r.offset for r in rest] == [1, 2, 3]


def test_send_records_shares_one_new_producer(fake_kafka):
    with binding(serializer=serde.pickle_serialize):
        list(kp.send_records([producer_record("t", i) for i in range(3)]))
    assert len(fake_kafka.producers) == 1
    assert len(fake_kafka.producers[0].sent) == 3


def test_send_all_records_keeps_going_after_failures(caplog):
    producer = FakeProducer()
    producer.reject_topics.add("rejected")
    producer.raise_topics.add("down")
    records = [
        producer_record("t", 0),
        producer_record("rejected", 1),
        producer_record("down", 2),
        producer_record("t", object()),
        producer_record("t", 4),
    ]

    with caplog.at_level(logging.WARNING, logger="kafunc.services.producer"):
        assert kp.send_all_records(records, producer, serde.json_serialize) is None

    assert [(s.topic, s.value) for s in producer.sent] == [("t", b"0"), ("rejected", b"1"), ("t", b"4")]
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 3
    assert not producer.closed


def test_send_all_records_drains_input_lazily():
    producer = FakeProducer()
    seen = []

    def records():
        for i in range(3):
            seen.append(len(producer.sent))
            yield producer_record("t", i)

    kp.send_all_records(records(), producer, serde.pickle_serialize)
    assert seen == [0, 1, 2]


def test_send_all_records_closes_the_producer_it_opened(fake_kafka):
    with binding(serializer=serde.pickle_serialize):
        kp.send_all_records(producer_record("t", i) for i in range(2))
    [producer] = fake_kafka.producers
    assert producer.flushed and producer.closed


def test_unkeyed_none_value_is_encoded_and_comes_back_as_none():
    producer = FakeProducer()
    for ser, de in (serde.codec("json"), serde.codec("pickle")):
        sent = kp.send_record(producer_record("t", None), producer, ser).get()
        assert sent.value is None
        assert producer.sent[-1].key is None
        assert de(producer.sent[-1].value) is None
    assert producer.sent[0].value == b"null"


def test_keyed_none_value_is_sent_as_a_tombstone():
    producer = FakeProducer()
    sent = kp.send_record(producer_record("t", None, key="k"), producer, serde.json_serialize).get()
    assert producer.sent[0].key == b'"k"'
    assert producer.sent[0].value is None
    assert (sent.key, sent.value) == ("k", None)


@pytest.mark.parametrize(
    "record, error",
    [
        (producer_record("t", None), ValueError),
        (producer_record("bad topic", b"v"), ValueError),
        (producer_record("t", 5), TypeError),
    ],
)
def test_client_side_rejection_surfaces_when_forced(record, error):
    producer = FakeProducer()
    producer.invalid_topics.add("bad topic")
    deferred = kp.send_record(record, producer, serde.identity)
    assert deferred.done()
    with pytest.raises(error):
        deferred.get()
    assert producer.sent == []


def test_send_records_dispatches_past_a_rejected_record():
    producer = FakeProducer()
    records = [producer_record("t", b"0"), producer_record("t", 1), producer_record("t", b"2")]

    results = kp.send_records(records, producer, serde.identity)

    assert [s.value for s in producer.sent] == [b"0", b"2"]
    assert next(results).value == b"0"
    with pytest.raises(TypeError):
        next(results)


def test_send_all_records_skips_client_side_rejections(caplog):
    producer = FakeProducer()
    producer.invalid_topics.add("bad topic")
    records = [
        producer_record("t", b"0"),
        producer_record("t", None),
        producer_record("t", 2),
        producer_record("bad topic", b"3"),
        producer_record("after", b"4"),
    ]

    with caplog.at_level(logging.WARNING, logger="kafunc.services.producer"):
        kp.send_all_records(records, producer, serde.identity)

    assert [(s.topic, s.value) for s in producer.sent] == [("t", b"0"), ("after", b"4")]
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 3


def test_send_all_records_sends_unkeyed_none_values():
    producer = FakeProducer()
    kp.send_all_records([producer_record("tomb", None), producer_record("after", 1)], producer, serde.json_serialize)
    assert [(s.topic, s.value) for s in producer.sent] == [("tomb", b"null"), ("after", b"1")]
