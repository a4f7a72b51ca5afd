"""Process-wide defaults with call-tree-local overrides.

Every value here has a *root* shared by all threads, plus an override
stored in a ``ContextVar``. ``bound()`` pushes an override for the
duration of a ``with`` block; threads started elsewhere begin with an
empty context and therefore only ever see the root.
"""
from __future__ import annotations

import contextlib
from contextvars import ContextVar
from typing import Any, Callable, Dict, Generic, Iterator, Optional, TypeVar

from kafunc.core.config import settings
from kafunc.services import serde

T = TypeVar("T")

_UNBOUND = object()


class DynamicVar(Generic[T]):
    """A global default with a context-local override."""

    def __init__(self, name: str, root: T) -> None:
        self.name = name
        self._root = root
        self._var: ContextVar[Any] = ContextVar(f"kafunc_{name}", default=_UNBOUND)

    def get(self) -> T:
        value = self._var.get()
        return self._root if value is _UNBOUND else value

    @property
    def root(self) -> T:
        return self._root

    def set_root(self, value: T) -> None:
        """Replace the default for every thread. Callers synchronize."""
        self._root = value

    @contextlib.contextmanager
    def bound(self, value: T) -> Iterator[T]:
        token = self._var.set(value)
        try:
            yield value
        finally:
            self._var.reset(token)

    def __repr__(self) -> str:
        return f"<DynamicVar {self.name}={self.get()!r}>"


_default_serializer, _default_deserializer = serde.codec(settings.codec)

KAFKA_CONNECT: DynamicVar[str] = DynamicVar("kafka_connect", settings.bootstrap_servers)
"""Bootstrap connection string, ``host:port`` entries joined by commas."""

CONSUMER_CONFIG: DynamicVar[Dict[str, Any]] = DynamicVar(
    "consumer_config", dict(settings.consumer_config)
)
PRODUCER_CONFIG: DynamicVar[Dict[str, Any]] = DynamicVar(
    "producer_config", dict(settings.producer_config)
)
SERIALIZER: DynamicVar[Optional[Callable[[Any], Any]]] = DynamicVar(
    "serializer", _default_serializer
)
DESERIALIZER: DynamicVar[Optional[Callable[[Any], Any]]] = DynamicVar(
    "deserializer", _default_deserializer
)
ZOOKEEPER_CONNECT: DynamicVar[Optional[str]] = DynamicVar("zookeeper_connect", None)
"""Set only inside ``kafunc.local.with_zookeeper``."""

_VARS: Dict[str, DynamicVar[Any]] = {
    "kafka_connect": KAFKA_CONNECT,
    "consumer_config": CONSUMER_CONFIG,
    "producer_config": PRODUCER_CONFIG,
    "serializer": SERIALIZER,
    "deserializer": DESERIALIZER,
    "zookeeper_connect": ZOOKEEPER_CONNECT,
}


@contextlib.contextmanager
def binding(**values: Any) -> Iterator[None]:
    """Bind several dynamic values for the enclosed call tree.

    Example:
        with binding(kafka_connect="broker:9092", deserializer=serde.json_deserialize):
            records = topics_records("orders")
    """
    unknown = set(values) - set(_VARS)
    if unknown:
        raise TypeError(f"Unknown binding(s): {', '.join(sorted(unknown))}")
    with contextlib.ExitStack() as stack:
        for name, value in values.items():
            stack.enter_context(_VARS[name].bound(value))
        yield


def set_serializer(serializer: Optional[Callable[[Any], Any]]) -> None:
    """Set the serializer in all threads."""
    SERIALIZER.set_root(serializer)


def set_deserializer(deserializer: Optional[Callable[[Any], Any]]) -> None:
    """Set the deserializer in all threads."""
    DESERIALIZER.set_root(deserializer)
