"""Supervision of the ZooKeeper/Kafka child processes.

The broker is a JVM program, so "embedded" here means a child process
owned by the calling scope. Ports are discovered by asking the OS (via
psutil) which sockets the process tree listens on.
"""
from __future__ import annotations

import logging
import os
import shutil
import socket
import subprocess
import tempfile
import time
from typing import Dict, List, Optional

import psutil

from kafunc.core.config import settings
from kafunc.core.exceptions import (
    ConfigurationError,
    HarnessError,
    ServiceShutdownError,
    ServiceStartupError,
)

log = logging.getLogger(__name__)


def kafka_script(name: str, kafka_home: Optional[str] = None) -> str:
    """Path of ``bin/<name>`` inside the Kafka distribution."""
    home = kafka_home or settings.kafka_home
    if not home:
        raise ConfigurationError(
            "No Kafka distribution configured; set KAFUNC_KAFKA_HOME"
        )
    path = os.path.join(home, "bin", name)
    if not os.path.isfile(path):
        raise ConfigurationError(f"{name} not found under {home}/bin")
    return path


def free_port(host: Optional[str] = None) -> int:
    """Ask the OS for an unused TCP port on *host* (default: ``local_host``).

    The port is released before this returns, so it is only a good guess
    until the caller's process binds it.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host or settings.local_host, 0))
        return s.getsockname()[1]


class ManagedProcess:
    """A child process with a private runtime directory.

    Subclasses provide ``command()`` and may override ``prepare()`` (write
    config files into the runtime directory before launch) and ``ready()``.
    """

    name = "process"

    def __init__(
        self,
        command: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        startup_timeout: Optional[float] = None,
        shutdown_timeout: Optional[float] = None,
    ) -> None:
        self._command = command
        self.env = dict(env or {})
        self.startup_timeout = startup_timeout or settings.startup_timeout_sec
        self.shutdown_timeout = shutdown_timeout or settings.shutdown_timeout_sec
        self.runtime_dir: Optional[str] = None
        self._proc: Optional[subprocess.Popen] = None
        self._output = None
        self._children: List[psutil.Process] = []

    # ---- hooks ----
    def command(self) -> List[str]:
        if not self._command:
            raise ConfigurationError(f"{self.name}: no command to run")
        return list(self._command)

    def prepare(self, runtime_dir: str) -> None:
        pass

    def ready(self, ports: List[int]) -> bool:
        return bool(ports)

    # ---- lifecycle ----
    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def startup(self) -> None:
        """Launch and block until the process listens (or fails)."""
        self.runtime_dir = tempfile.mkdtemp(prefix=f"kafunc-{self.name}-")
        try:
            self.prepare(self.runtime_dir)
            env = {**os.environ, **self.env}
            env.pop("JMX_PORT", None)  # one listening socket per process
            env.setdefault("LOG_DIR", os.path.join(self.runtime_dir, "logs"))
            self._output = open(os.path.join(self.runtime_dir, "console.log"), "wb")
            self._proc = subprocess.Popen(
                self.command(),
                stdout=self._output,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                env=env,
                cwd=self.runtime_dir,
            )
            log.debug("Started %s pid=%s", self.name, self._proc.pid)
            self._wait_until_ready()
        except BaseException:
            self._stop_quietly()
            raise

    def _wait_until_ready(self) -> None:
        deadline = time.monotonic() + self.startup_timeout
        while True:
            rc = self._proc.poll()
            if rc is not None:
                raise ServiceStartupError(self.name, f"exited with code {rc}", self.output_tail())
            if self.ready(self.listening_ports()):
                return
            if time.monotonic() >= deadline:
                raise ServiceStartupError(
                    self.name,
                    f"not listening after {self.startup_timeout:.0f}s",
                    self.output_tail(),
                )
            time.sleep(settings.poll_interval_sec)

    def _process_tree(self) -> List[psutil.Process]:
        if self._proc is None:
            return []
        try:
            root = psutil.Process(self._proc.pid)
            return [root] + root.children(recursive=True)
        except psutil.NoSuchProcess:
            return []

    def listening_ports(self) -> List[int]:
        ports = set()
        for proc in self._process_tree():
            try:
                conns = proc.net_connections(kind="inet")
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            for c in conns:
                if c.status == psutil.CONN_LISTEN and c.laddr:
                    ports.add(c.laddr.port)
        return sorted(ports)

    def bound_port(self) -> int:
        """The TCP port the running process actually listens on."""
        ports = self.listening_ports()
        if not ports:
            raise HarnessError(f"{self.name} is not listening on any port")
        if len(ports) > 1:
            log.debug("%s listens on %s; using %d", self.name, ports, ports[0])
        return ports[0]

    def shutdown(self) -> None:
        """Ask the process (and anything it spawned) to stop. Non-blocking."""
        if not self.running():
            return
        self._children = self._process_tree()[1:]
        for child in self._children:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                pass
        self._proc.terminate()

    def await_shutdown(self) -> None:
        """Wait for the process to exit, escalating to SIGKILL, then clean up."""
        try:
            if self._proc is not None:
                try:
                    self._proc.wait(timeout=self.shutdown_timeout)
                except subprocess.TimeoutExpired:
                    log.warning("%s pid=%s ignored SIGTERM; killing", self.name, self._proc.pid)
                    self._proc.kill()
                    try:
                        self._proc.wait(timeout=self.shutdown_timeout)
                    except subprocess.TimeoutExpired:
                        raise ServiceShutdownError(
                            f"{self.name} pid={self._proc.pid} survived SIGKILL"
                        ) from None
            _, alive = psutil.wait_procs(self._children, timeout=self.shutdown_timeout)
            for proc in alive:
                try:
                    proc.kill()
                except psutil.NoSuchProcess:
                    pass
        finally:
            self._children = []
            if self._output is not None:
                self._output.close()
                self._output = None
            if self.runtime_dir is not None:
                shutil.rmtree(self.runtime_dir, ignore_errors=True)
                self.runtime_dir = None

    def _stop_quietly(self) -> None:
        try:
            self.shutdown()
            self.await_shutdown()
        except Exception:
            log.exception("Failed to clean up %s after a failed start", self.name)

    def output_tail(self, lines: int = 40) -> str:
        if self.runtime_dir is None:
            return ""
        path = os.path.join(self.runtime_dir, "console.log")
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError:
            return ""
        return "\n".join(data.decode("utf-8", "replace").splitlines()[-lines:])

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} pid={self.pid}>"
