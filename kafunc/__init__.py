"""A less-imperative approach to Kafka.

Consumers become lazy, infinite sequences of decoded records; producers
become serialize-then-send pipelines returning deferred results.
"""
from kafunc.core.context import (
    CONSUMER_CONFIG,
    DESERIALIZER,
    KAFKA_CONNECT,
    PRODUCER_CONFIG,
    SERIALIZER,
    ZOOKEEPER_CONNECT,
    binding,
    set_deserializer,
    set_serializer,
)
from kafunc.core.exceptions import (
    ConfigurationError,
    DeserializationError,
    HarnessError,
    KafuncError,
    SerializationError,
    ServiceShutdownError,
    ServiceStartupError,
)
from kafunc.infra.kafka.client import MAX_POLL_TIMEOUT_MS
from kafunc.models.records import InboundRecord, OutboundRecord, SentRecord, producer_record
from kafunc.services.consumer import (
    RecordStream,
    consumer_records,
    consumer_values,
    deserialize_records,
    make_consumer,
    next_records,
    record_values,
    subscribe,
    subscriptions,
    topics_records,
)
from kafunc.services.producer import (
    DeferredSend,
    make_producer,
    send_all_records,
    send_record,
    send_records,
    serialize_record,
    serialize_records,
)
from kafunc.services.serde import (
    json_deserialize as json_deserializer,
    json_serialize as json_serializer,
    pickle_deserialize as pickle_deserializer,
    pickle_serialize as pickle_serializer,
)

__version__ = "0.3.0"

__all__ = [
    "CONSUMER_CONFIG",
    "DESERIALIZER",
    "KAFKA_CONNECT",
    "MAX_POLL_TIMEOUT_MS",
    "PRODUCER_CONFIG",
    "SERIALIZER",
    "ZOOKEEPER_CONNECT",
    "ConfigurationError",
    "DeferredSend",
    "DeserializationError",
    "HarnessError",
    "InboundRecord",
    "KafuncError",
    "OutboundRecord",
    "RecordStream",
    "SentRecord",
    "SerializationError",
    "ServiceShutdownError",
    "ServiceStartupError",
    "binding",
    "consumer_records",
    "consumer_values",
    "deserialize_records",
    "json_deserializer",
    "json_serializer",
    "make_consumer",
    "make_producer",
    "next_records",
    "pickle_deserializer",
    "pickle_serializer",
    "producer_record",
    "record_values",
    "send_all_records",
    "send_record",
    "send_records",
    "serialize_record",
    "serialize_records",
    "set_deserializer",
    "set_serializer",
    "subscribe",
    "subscriptions",
    "topics_records",
]
