"""Embedded ZooKeeper, run from the Kafka distribution's scripts."""
from __future__ import annotations

import os
from typing import Dict, List, Optional

from kafunc.infra.local.process import ManagedProcess, free_port, kafka_script
from kafunc.infra.local.properties import write_properties

DEFAULT_TICK_TIME = 2000


class ZooKeeperServer(ManagedProcess):
    """A standalone ZooKeeper storing its data in *data_dir*.

    The client port is picked by the OS before launch; ZooKeeper is ready
    once it listens there.
    """

    name = "zookeeper"

    def __init__(self, data_dir: str, kafka_home: Optional[str] = None, **kw) -> None:
        super().__init__(**kw)
        self.data_dir = data_dir
        self.script = kafka_script("zookeeper-server-start.sh", kafka_home)
        self.port = free_port()
        self.config_path: Optional[str] = None

    def properties(self) -> Dict[str, str]:
        return {
            "dataDir": self.data_dir,
            "clientPort": str(self.port),
            "tickTime": str(DEFAULT_TICK_TIME),
            "maxClientCnxns": "0",
            "admin.enableServer": "false",
        }

    def prepare(self, runtime_dir: str) -> None:
        self.config_path = os.path.join(runtime_dir, "zookeeper.properties")
        write_properties(self.config_path, self.properties())

    def command(self) -> List[str]:
        return [self.script, self.config_path]

    def ready(self, ports: List[int]) -> bool:
        return self.port in ports

    def bound_port(self) -> int:
        return self.port
