"""
Spawning and supervising server processes.

``ProcessController`` owns exactly one child process. ``ProcessManager``
builds the node layout of a topology, launches the binary with the right
flags and keeps the registry of live controllers keyed by HTTP port.
"""

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .client import NodeClient
from .config import (
    ADDITIONAL_ARGS,
    DEFAULT_API_KEY,
    DEFAULT_HOST,
    DISPOSE_TIMEOUT,
    HEALTH_INTERVAL,
    HEALTH_TIMEOUT,
    HarnessConfig,
)
from .errors import (
    FilesystemError,
    HarnessError,
    HealthCheckError,
    ProcessRuntimeError,
    ProcessSpawnError,
    RequestError,
)
from .network import resolve_address
from .nodes import (
    MEMBERSHIP_FILE,
    SNAPSHOT_DIRS,
    NodeDescriptor,
    Topology,
    build_nodes,
    write_membership_record,
)

logger = logging.getLogger(__name__)

KILL_WAIT = 10.0
PROCESS_LOG = "process.log"


class ProcessController:
    """Lifecycle of one spawned server process"""

    def __init__(self, process: subprocess.Popen, port: int, api_key: str, node: NodeDescriptor,
                 multi_node: bool = False, log_file=None, host: str = DEFAULT_HOST):
        self.process = process
        self.port = port
        self.api_key = api_key
        self.node = node
        self.multi_node = multi_node
        self.log_file = log_file
        self.client = NodeClient(port, api_key, host=host)
        self.exit_code: Optional[int] = None
        self.error: Optional[BaseException] = None

        self._disposed = False
        self._lock = threading.RLock()
        self._exited = threading.Event()
        self._watcher = threading.Thread(target=self._watch, name=f"node-{port}-watcher", daemon=True)
        self._watcher.start()

    def __repr__(self):
        return f"ProcessController(port={self.port}, pid={self.pid}, exit_code={self.exit_code})"

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    @property
    def is_running(self) -> bool:
        return not self._exited.is_set()

    def _watch(self):
        try:
            code = self.process.wait()
        except OSError as e:
            self.error = e
            code = self.process.returncode
            logger.error(f"[Node {self.port}] error while waiting for process: {e}")

        self.exit_code = code
        self._exited.set()

        if code == 0 or self._disposed:
            logger.debug(f"[Node {self.port}] process exited with code {code}")
        else:
            logger.error(f"[Node {self.port}] process exited unexpectedly with code {code}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the process has exited; returns False on timeout"""
        return self._exited.wait(timeout)

    def _signal(self, sig: int):
        # Nodes run in their own session, so signal the whole group
        try:
            os.killpg(os.getpgid(self.process.pid), sig)
        except ProcessLookupError:
            pass

    def dispose(self, timeout: float = DISPOSE_TIMEOUT):
        """
        Stop the process: SIGTERM, then SIGKILL if it is still alive after
        ``timeout`` seconds. Returns only once the exit has been observed.
        Calling it again, or on a process that already exited, is a no-op.
        """
        with self._lock:
            if self._disposed:
                return
            self._disposed = True

        try:
            if not self.is_running:
                return

            logger.info(f"[Node {self.port}] Stopping process {self.pid}")
            self._signal(signal.SIGTERM)
            if self.wait(timeout):
                return

            logger.warning(f"[Node {self.port}] Still running after {timeout}s, sending SIGKILL")
            self._signal(signal.SIGKILL)
            if not self.wait(KILL_WAIT):
                raise ProcessRuntimeError(f"Process {self.pid} on port {self.port} did not exit after SIGKILL")
        finally:
            self.client.close()
            if self.log_file is not None and not self.log_file.closed:
                self.log_file.close()


def clean_data_dirs(working_directory: str, snapshot_paths: Iterable[str] = ()):
    """Remove and recreate the directories of both topologies and the snapshot directories"""
    if not os.path.isdir(working_directory):
        raise FilesystemError(f"{working_directory} does not exist")

    directories = []
    for topology in Topology:
        for node in build_nodes(topology, working_directory):
            directories.extend(node.directories)
        directories.append(os.path.join(working_directory, SNAPSHOT_DIRS[topology]))
    directories.extend(path for path in snapshot_paths if path not in directories)

    for directory in directories:
        try:
            shutil.rmtree(directory, ignore_errors=True)
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Could not recreate {directory}: {e}") from e
    logger.debug(f"Recreated {len(directories)} directories under {working_directory}")


class ProcessManager:
    """Topology construction and the command surface used by the phase runner"""

    def __init__(self, binary_path: str, api_key: str = DEFAULT_API_KEY,
                 working_directory: Optional[str] = None, snapshot_path: Optional[str] = None,
                 ip_address: Optional[str] = None, topology: Topology = Topology.CLUSTER,
                 proxy_env: Optional[Mapping[str, str]] = None, in_ci: bool = False,
                 extra_args: Optional[List[str]] = None, nodes: Optional[List[NodeDescriptor]] = None,
                 host: str = DEFAULT_HOST):
        self.binary_path = binary_path
        self.api_key = api_key
        self.working_directory = os.path.abspath(working_directory or os.getcwd())
        self.topology = topology
        self.snapshot_path = snapshot_path or os.path.join(self.working_directory, SNAPSHOT_DIRS[topology])
        self.ip_address = ip_address
        self.proxy_env = dict(proxy_env or {})
        self.in_ci = in_ci
        self.extra_args = list(ADDITIONAL_ARGS if extra_args is None else extra_args)
        self.host = host
        self.nodes = list(nodes) if nodes is not None else build_nodes(topology, self.working_directory)
        self.membership_path = os.path.join(self.working_directory, MEMBERSHIP_FILE)

        self.processes: Dict[int, ProcessController] = {}
        # Reentrant: a signal handler may call shutdown while the main thread holds it
        self._registry_lock = threading.RLock()

    @classmethod
    def from_config(cls, config: HarnessConfig, topology: Topology) -> "ProcessManager":
        return cls(
            binary_path=config.require_binary(),
            api_key=config.api_key,
            working_directory=config.working_directory,
            snapshot_path=config.snapshot_path,
            ip_address=config.ip_address,
            topology=topology,
            proxy_env=config.proxy_env,
            in_ci=config.in_ci,
        )

    @property
    def ports(self) -> List[int]:
        return [node.http for node in self.nodes]

    def controller(self, port: int) -> ProcessController:
        with self._registry_lock:
            controller = self.processes.get(port)
        if controller is None:
            raise ProcessRuntimeError(f"No process registered on port {port}")
        return controller

    def _client(self, port: int) -> NodeClient:
        with self._registry_lock:
            controller = self.processes.get(port)
        return controller.client if controller else NodeClient(port, self.api_key, host=self.host)

    def _forget(self, controller: ProcessController):
        with self._registry_lock:
            if self.processes.get(controller.port) is controller:
                del self.processes[controller.port]

    # Topology setup

    def _check_working_directory(self):
        if not os.path.isdir(self.working_directory):
            raise FilesystemError(f"{self.working_directory} does not exist")

    def resolve_address(self) -> str:
        return resolve_address(self.ip_address, self.in_ci)

    def clean_data_dirs(self, snapshot_paths: Iterable[str] = ()):
        clean_data_dirs(self.working_directory, [self.snapshot_path, *snapshot_paths])

    def preflight(self):
        """Fail fast on a missing working directory or an unusable binary"""
        self._check_working_directory()
        self._check_binary()

    def setup_nodes(self, skip_cleanup: bool = False) -> List[NodeDescriptor]:
        """
        Write the membership record and prepare the node directories.

        With ``skip_cleanup`` the existing directories are reused untouched,
        which is how a restart proves data survived.
        """
        self._check_working_directory()
        address = self.resolve_address()
        line = write_membership_record(self.membership_path, address, self.nodes)
        logger.debug(f"Wrote membership record {self.membership_path}: {line}")

        prepared = []
        for node in self.nodes:
            try:
                if not skip_cleanup:
                    shutil.rmtree(node.data_dir, ignore_errors=True)
                    shutil.rmtree(node.log_dir, ignore_errors=True)
                for directory in node.directories:
                    os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise FilesystemError(f"Could not prepare directories for {node.name}: {e}") from e
            prepared.append(node.data_dir)

        if len(prepared) != len(self.nodes):
            raise FilesystemError(f"Prepared {len(prepared)} data directories for {len(self.nodes)} nodes")

        missing = [d for node in self.nodes for d in node.directories if not os.path.isdir(d)]
        if missing:
            raise FilesystemError(f"Directories missing after setup: {', '.join(missing)}")

        return list(self.nodes)

    # Process lifecycle

    def build_args(self, node: NodeDescriptor, multi_node: bool, address: Optional[str] = None) -> List[str]:
        args = [
            f"--data-dir={node.data_dir}",
            f"--api-key={self.api_key}",
            f"--api-port={node.http}",
            "--api-address=0.0.0.0",
            f"--peering-port={node.peering}",
        ]
        if multi_node:
            args.append(f"--nodes={self.membership_path}")
        if address and (multi_node or self.ip_address):
            args.append(f"--peering-address={address}")
        args += [
            f"--log-dir={node.log_dir}",
            f"--analytics-dir={node.analytics_dir}",
        ]
        return args + self.extra_args

    def _check_binary(self):
        if not os.path.exists(self.binary_path):
            raise ProcessSpawnError(f"{self.binary_path} does not exist")
        if not os.access(self.binary_path, os.X_OK):
            raise ProcessSpawnError(f"{self.binary_path} is not executable")

    def start_process(self, node: NodeDescriptor, multi_node: Optional[bool] = None) -> ProcessController:
        if multi_node is None:
            multi_node = self.topology is Topology.CLUSTER

        self._check_working_directory()
        self._check_binary()
        address = self.resolve_address()

        with self._registry_lock:
            if node.http in self.processes:
                raise ProcessSpawnError(f"A process is already registered on port {node.http}")

        args = self.build_args(node, multi_node, address)
        env = os.environ.copy()
        env.update(self.proxy_env)

        os.makedirs(node.log_dir, exist_ok=True)
        log_file = open(os.path.join(node.log_dir, PROCESS_LOG), "a")

        logger.info(f"[Node {node.http}] Starting {node.name} (peering {node.peering})")
        logger.debug(f"[Node {node.http}] Command: {self.binary_path} {' '.join(args)}")
        try:
            process = subprocess.Popen(
                [self.binary_path] + args,
                cwd=self.working_directory,
                env=env,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                preexec_fn=os.setsid,
            )
        except OSError as e:
            log_file.close()
            raise ProcessSpawnError(f"Failed to start {self.binary_path}: {e}") from e

        controller = ProcessController(
            process, node.http, self.api_key, node,
            multi_node=multi_node, log_file=log_file, host=self.host,
        )
        with self._registry_lock:
            self.processes[node.http] = controller
        return controller

    def stop_process(self, port: int, timeout: float = DISPOSE_TIMEOUT):
        controller = self.controller(port)
        try:
            controller.dispose(timeout)
        finally:
            self._forget(controller)

    def restart_process(self, port: int) -> ProcessController:
        """Stop the node on ``port`` and start it again on the same data directory"""
        controller = self.controller(port)
        self.stop_process(port)
        restarted = self.start_process(controller.node, multi_node=controller.multi_node)
        self.wait_for_health(port)
        return restarted

    def start_topology(self, skip_cleanup: bool = False) -> List[NodeDescriptor]:
        """Start every node of the topology and wait until all are healthy"""
        nodes = self.setup_nodes(skip_cleanup=skip_cleanup)
        for node in nodes:
            self.start_process(node)
        self.wait_for_all_healthy([node.http for node in nodes])
        return nodes

    def restart_all(self, fresh: bool = False) -> List[NodeDescriptor]:
        """Stop every node, then start them again on their existing data unless ``fresh``"""
        with self._registry_lock:
            ports = sorted(self.processes)
        for port in ports:
            self.stop_process(port)
        return self.start_topology(skip_cleanup=not fresh)

    def shutdown(self, timeout: float = DISPOSE_TIMEOUT):
        """Dispose every registered process; safe to call repeatedly"""
        with self._registry_lock:
            controllers = list(self.processes.values())
        if not controllers:
            return

        def dispose(controller):
            try:
                controller.dispose(timeout)
            except ProcessRuntimeError as e:
                logger.error(str(e))

        # Workers never take the registry lock, the caller may already hold it
        try:
            with ThreadPoolExecutor(max_workers=len(controllers)) as pool:
                list(pool.map(dispose, controllers))
        finally:
            for controller in controllers:
                self._forget(controller)
        logger.info(f"Stopped {len(controllers)} process(es)")

    # Health and administration

    def get_health(self, port: int) -> Dict[str, Any]:
        return self._client(port).health()

    def wait_for_health(self, port: int, timeout: float = HEALTH_TIMEOUT,
                        interval: float = HEALTH_INTERVAL) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_error: Optional[HarnessError] = None
        while time.monotonic() < deadline:
            with self._registry_lock:
                controller = self.processes.get(port)
            if controller is not None and not controller.is_running:
                raise ProcessRuntimeError(
                    f"Process on port {port} exited with code {controller.exit_code} before becoming healthy"
                )
            try:
                return self.get_health(port)
            except (RequestError, HealthCheckError) as e:
                last_error = e
            time.sleep(interval)
        raise HealthCheckError(port, f"timed out after {timeout}s waiting for /health ({last_error})")

    def wait_for_all_healthy(self, ports: List[int], timeout: float = HEALTH_TIMEOUT):
        """Wait for every node concurrently; raise the first failure once all have finished"""
        with ThreadPoolExecutor(max_workers=max(len(ports), 1)) as pool:
            futures = [pool.submit(self.wait_for_health, port, timeout) for port in ports]
        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            raise errors[0]
        logger.info(f"All nodes healthy: {', '.join(str(p) for p in ports)}")

    def snapshot(self, port: int, destination: Optional[str] = None) -> Dict[str, Any]:
        destination = destination or self.snapshot_path
        logger.info(f"[Node {port}] Taking snapshot into {destination}")
        return self._client(port).snapshot(destination)

    # Thin wrappers over the node API

    def index_documents(self, port: int, collection: str, documents, batch_size: Optional[int] = None):
        return self._client(port).import_documents(collection, documents, batch_size=batch_size)

    def create_collection(self, port: int, schema: Mapping[str, Any]) -> Dict[str, Any]:
        return self._client(port).create_collection(schema)

    def get_collection(self, port: int, name: str) -> Dict[str, Any]:
        return self._client(port).retrieve_collection(name)

    def create_conversation_model(self, port: int, model: Mapping[str, Any]) -> Dict[str, Any]:
        return self._client(port).create_conversation_model(model)

    def get_conversation_model(self, port: int, model_id: str) -> Dict[str, Any]:
        return self._client(port).retrieve_conversation_model(model_id)

    def query_collection(self, port: int, collection: str, query: Mapping[str, Any]) -> Dict[str, Any]:
        return self._client(port).search(collection, query)
