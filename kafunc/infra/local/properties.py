"""Java ``.properties`` helpers for the embedded ZooKeeper/Kafka processes."""
from __future__ import annotations

from typing import Any, Dict, Mapping


def property_key(key: Any) -> str:
    """'log-dir' / 'log_dir' -> 'log.dir'."""
    return str(key).strip().replace("-", ".").replace("_", ".")


def to_properties(m: Mapping[Any, Any]) -> Dict[str, str]:
    """Normalize keys and stringify values; ``None`` values are dropped."""
    return {property_key(k): _stringify(v) for k, v in m.items() if v is not None}


def _stringify(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def _escape(s: str, key: bool = False) -> str:
    s = s.replace("\\", "\\\\").replace("\n", "\\n")
    if key:
        for ch in (":", "=", " "):
            s = s.replace(ch, "\\" + ch)
    return s


def write_properties(path: str, props: Mapping[str, str]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        for k in sorted(props):
            f.write(f"{_escape(k, key=True)}={_escape(props[k])}\n")
