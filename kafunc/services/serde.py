"""Codecs between in-process values and the bytes that go on the wire.

A serializer maps any value, ``None`` included, to ``bytes``. A
deserializer maps ``bytes`` back and maps a missing payload (a tombstone)
to ``None``.
"""
from __future__ import annotations

import json
import pickle
from typing import Any, Callable, Optional, Tuple

from kafunc.core.exceptions import ConfigurationError

Serializer = Callable[[Any], bytes]
Deserializer = Callable[[Optional[bytes]], Any]


def identity(x: Any) -> Any:
    return x


# ---------- generic structural codec ----------

def pickle_serialize(obj: Any) -> bytes:
    """Serialize any picklable object. Not portable outside Python."""
    return pickle.dumps(obj, protocol=pickle.HIGHEST_PROTOCOL)


def pickle_deserialize(data: Optional[bytes]) -> Any:
    # Only consume topics you trust: unpickling runs arbitrary code.
    if data is None:
        return None
    return pickle.loads(data)


# ---------- self-describing text codec ----------

def json_serialize(obj: Any) -> bytes:
    """Serialize as UTF-8 JSON; readable by any other client."""
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def json_deserialize(data: Optional[bytes]) -> Any:
    if data is None:
        return None
    return json.loads(bytes(data).decode("utf-8"))


_CODECS = {
    "pickle": (pickle_serialize, pickle_deserialize),
    "json": (json_serialize, json_deserialize),
}


def codec(name: str) -> Tuple[Serializer, Deserializer]:
    """Return the ``(serializer, deserializer)`` pair registered as *name*."""
    try:
        return _CODECS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown codec {name!r}; expected one of {sorted(_CODECS)}"
        ) from None


def nil_safe(fn: Optional[Callable[[Any], Any]]) -> Callable[[Any], Any]:
    """Wrap *fn* so ``None`` passes through untouched; ``None`` means identity."""
    if fn is None:
        return identity

    def _apply(x: Any) -> Any:
        return None if x is None else fn(x)

    return _apply
