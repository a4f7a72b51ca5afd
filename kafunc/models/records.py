"""Inbound / outbound record models."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class InboundRecord(BaseModel):
    """A record as fetched by a consumer.

    ``key`` and ``value`` hold raw bytes straight out of the client and the
    decoded values once the consumer core has run the deserializer.
    ``checksum`` is ``None`` for message formats without a per-record CRC.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: Any = None
    value: Any = None
    partition: int
    topic: str
    timestamp: int
    offset: int = Field(..., ge=0)
    checksum: Optional[int] = None


class OutboundRecord(BaseModel):
    """A record about to be sent. ``None`` partition/timestamp are broker-assigned."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    topic: str = Field(..., min_length=1)
    value: Any
    key: Any = None
    partition: Optional[int] = Field(default=None, ge=0)
    timestamp: Optional[int] = None


class SentRecord(OutboundRecord):
    """The caller's original record overlaid with broker-assigned metadata."""

    partition: int
    timestamp: int
    offset: int
    checksum: Optional[int] = None


def producer_record(
    topic: str,
    value: Any,
    key: Any = None,
    partition: Optional[int] = None,
    timestamp: Optional[int] = None,
) -> OutboundRecord:
    """Create an outbound record.

    Entries:
      * topic     - Destination topic.
      * value     - Value contained in record.
      * key       - (optional) Key.
      * partition - (optional) Destination partition of topic.
      * timestamp - (optional) Timestamp of record, ms since epoch.
    """
    return OutboundRecord(
        topic=topic, value=value, key=key, partition=partition, timestamp=timestamp
    )
