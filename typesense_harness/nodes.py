"""
Node layout for the two topologies the harness drives, and the cluster
membership file read by the server binary.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List


class Topology(Enum):
    SINGLE = "single"
    CLUSTER = "multi"

    @property
    def size(self) -> int:
        return len(NODE_LAYOUT[self])


@dataclass(frozen=True)
class NodeDescriptor:
    """Ports and directories of one server process"""
    name: str
    http: int
    peering: int
    data_dir: str
    log_dir: str
    analytics_dir: str

    @property
    def directories(self) -> List[str]:
        return [self.data_dir, self.analytics_dir, self.log_dir]


# name, http port, peering port, data directory, log directory
NODE_LAYOUT = {
    Topology.SINGLE: [
        ("single-node", 8108, 8107, "typesense-data", "typesense"),
    ],
    Topology.CLUSTER: [
        ("multi-node1", 5108, 5107, "typesense-data-1", "typesense-1"),
        ("multi-node2", 6108, 6107, "typesense-data-2", "typesense-2"),
        ("multi-node3", 7108, 7107, "typesense-data-3", "typesense-3"),
    ],
}

SNAPSHOT_DIRS = {
    Topology.SINGLE: os.path.join("snapshot", "single-node"),
    Topology.CLUSTER: os.path.join("snapshot", "multi-node"),
}

SINGLE_NODE_PORT = NODE_LAYOUT[Topology.SINGLE][0][1]
CLUSTER_PORTS = [entry[1] for entry in NODE_LAYOUT[Topology.CLUSTER]]

MEMBERSHIP_FILE = "nodes"


def build_nodes(topology: Topology, working_directory: str) -> List[NodeDescriptor]:
    nodes = []
    for name, http, peering, data_dir, log_dir in NODE_LAYOUT[topology]:
        data_path = os.path.join(working_directory, data_dir)
        nodes.append(NodeDescriptor(
            name=name,
            http=http,
            peering=peering,
            data_dir=data_path,
            log_dir=os.path.join(working_directory, "logs", log_dir),
            analytics_dir=os.path.join(data_path, "analytics_db"),
        ))
    return nodes


def standalone_node(data_dir: str, http: int = SINGLE_NODE_PORT, peering: int = None) -> NodeDescriptor:
    """Single node rooted in an arbitrary data directory, used by the benchmark"""
    return NodeDescriptor(
        name=f"node-{http}",
        http=http,
        peering=peering if peering is not None else http - 1,
        data_dir=data_dir,
        log_dir=os.path.join(data_dir, "logs"),
        analytics_dir=os.path.join(data_dir, "analytics_db"),
    )


def membership_line(ip_address: str, nodes: Iterable[NodeDescriptor]) -> str:
    return ",".join(f"{ip_address}:{node.peering}:{node.http}" for node in nodes)


def write_membership_record(path: str, ip_address: str, nodes: Iterable[NodeDescriptor]) -> str:
    """Write the ``ip:peering:http`` list and force it to disk before any node reads it"""
    line = membership_line(ip_address, nodes)
    with open(path, "w") as f:
        f.write(line)
        f.flush()
        os.fsync(f.fileno())
    return line
