# kafunc/core/config.py
import json
from typing import Annotated, Any, Dict, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_overlay(v: Any) -> Dict[str, Any]:
    """Accept a mapping, a JSON object, or 'key=value,key=value'."""
    if v is None:
        return {}
    if isinstance(v, dict):
        return {str(k).strip(): val for k, val in v.items()}
    if isinstance(v, str):
        try:
            obj = json.loads(v)
            if isinstance(obj, dict):
                return {str(k).strip(): val for k, val in obj.items()}
        except ValueError:
            pass
        result: Dict[str, Any] = {}
        for part in v.split(","):
            part = part.strip()
            if not part or "=" not in part:
                continue
            key, val = part.split("=", 1)
            result[key.strip()] = val.strip()
        return result
    return dict(v)


class Settings(BaseSettings):
    """
    Process-wide defaults loaded from environment variables (and .env).

    Notes
    -----
    - These values seed the *root* of each dynamic binding in
      `kafunc.core.context`; changing them after import has no effect,
      use `DynamicVar.set_root` or `kafunc.binding(...)` instead.
    - `consumer_config` / `producer_config` accept JSON or a compact form:
        KAFUNC_CONSUMER_CONFIG='{"auto.offset.reset": "earliest"}'
      or:
        KAFUNC_CONSUMER_CONFIG='auto.offset.reset=earliest,max.poll.records=100'
    """
    model_config = SettingsConfigDict(
        env_prefix="KAFUNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---------- Kafka client ----------
    bootstrap_servers: str = Field("localhost:9092")
    consumer_config: Annotated[Dict[str, Any], NoDecode] = Field(default_factory=dict)
    producer_config: Annotated[Dict[str, Any], NoDecode] = Field(default_factory=dict)

    # ---------- Serialization ----------
    codec: Literal["pickle", "json"] = "pickle"

    # ---------- Embedded harness ----------
    kafka_home: str | None = None
    local_host: str = "localhost"
    startup_timeout_sec: float = Field(default=60.0, gt=0)
    shutdown_timeout_sec: float = Field(default=30.0, gt=0)
    poll_interval_sec: float = Field(default=0.1, gt=0)

    @field_validator("consumer_config", "producer_config", mode="before")
    def _parse_config_overlay(cls, v):
        return _parse_overlay(v)


settings = Settings()
