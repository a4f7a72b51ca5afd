"""Embedded Kafka broker, run from the Kafka distribution's scripts."""
from __future__ import annotations

import os
from typing import Dict, List, Mapping, Optional

from kafunc.core.config import settings
from kafunc.infra.local.process import ManagedProcess, kafka_script
from kafunc.infra.local.properties import to_properties, write_properties


class KafkaServer(ManagedProcess):
    """A single Kafka broker configured from a property map.

    ``port`` ("0" = any) is turned into a PLAINTEXT listener unless
    ``listeners`` is given. After ``startup()``, ``bound_port()`` reports
    the port the broker really bound.
    """

    name = "kafka"

    def __init__(
        self,
        props: Mapping[str, str],
        kafka_home: Optional[str] = None,
        host: Optional[str] = None,
        **kw,
    ) -> None:
        super().__init__(**kw)
        props = to_properties(props)
        port = props.pop("port", "0")
        props.setdefault("listeners", f"PLAINTEXT://{host or settings.local_host}:{port}")
        self.props: Dict[str, str] = props
        self.script = kafka_script("kafka-server-start.sh", kafka_home)
        self.config_path: Optional[str] = None

    def prepare(self, runtime_dir: str) -> None:
        self.config_path = os.path.join(runtime_dir, "server.properties")
        write_properties(self.config_path, self.props)

    def command(self) -> List[str]:
        return [self.script, self.config_path]
