"""Exception hierarchy for kafunc.

Broker-client failures (``kafka.errors.KafkaError`` and friends) are *not*
wrapped here; they propagate exactly as kafka-python raises them.
"""
from __future__ import annotations

from typing import Any, Optional


class KafuncError(Exception):
    """Base class for errors raised by kafunc itself."""


class ConfigurationError(KafuncError, ValueError):
    """Invalid or incomplete configuration (codec name, harness setup...)."""


class SerializationError(KafuncError):
    """The active serializer rejected a key or value about to be sent.

    Attributes
    ----------
    topic : str | None
        Destination topic of the record.
    field : str
        ``"key"`` or ``"value"``.
    """

    def __init__(self, topic: Optional[str], field: str) -> None:
        self.topic = topic
        self.field = field
        super().__init__(f"Failed to serialize {field} for topic {topic!r}")


class DeserializationError(KafuncError):
    """The active deserializer rejected a consumed key or value.

    Attributes
    ----------
    payload : bytes | None
        The raw bytes that failed to decode.
    topic : str
    partition : int
    offset : int
        Coordinates of the offending record.
    field : str
        ``"key"`` or ``"value"``.
    """

    def __init__(
        self,
        payload: Any,
        topic: str,
        partition: int,
        offset: int,
        field: str = "value",
    ) -> None:
        self.payload = payload
        self.topic = topic
        self.partition = partition
        self.offset = offset
        self.field = field
        super().__init__(
            f"Failed to deserialize {field} at {topic}-{partition}@{offset} "
            f"({_preview(payload)})"
        )


class HarnessError(KafuncError):
    """Lifecycle failure of an embedded ZooKeeper/Kafka process."""


class ServiceStartupError(HarnessError):
    """A managed process exited or never started listening."""

    def __init__(self, name: str, reason: str, output: str = "") -> None:
        self.name = name
        self.reason = reason
        self.output = output
        msg = f"{name} failed to start: {reason}"
        if output:
            msg = f"{msg}\n--- last output ---\n{output}"
        super().__init__(msg)


class ServiceShutdownError(HarnessError):
    """A managed process could not be stopped cleanly."""


def _preview(payload: Any, limit: int = 32) -> str:
    if payload is None:
        return "no payload"
    if isinstance(payload, (bytes, bytearray)):
        head = bytes(payload[:limit])
        more = "..." if len(payload) > limit else ""
        return f"{len(payload)} bytes: {head!r}{more}"
    return repr(payload)[:limit]
