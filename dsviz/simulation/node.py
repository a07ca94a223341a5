"""
Node model for the algorithm simulator.

Defines the two kinds of simulated process: election nodes (a process
that can fail and take part in leader election) and clock nodes (a
process with a drifting logical clock that takes part in clock
synchronization). Also provides bulk generation of node sets.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

import numpy as np

from .distributions import Distribution, Milliseconds, Uniform

# Election node ids are drawn from [MIN_NODE_ID, MAX_NODE_ID]
MIN_NODE_ID = 10
MAX_NODE_ID = 99

REFERENCE_NODE_ID = 0

# Initial client clock drift is drawn from [-MAX_DRIFT_MS, MAX_DRIFT_MS)
MAX_DRIFT_MS = 3000


class NodeRole(Enum):
    """Role a clock node plays in a synchronization round."""

    SERVER = "server"  # Cristian time server
    COORDINATOR = "coordinator"  # Berkeley coordinator
    CLIENT = "client"


@dataclass
class ElectionNode:
    """A process taking part in leader election.

    Attributes:
        node_id: Unique identifier, also the election priority.
        alive: Whether the process is up. Failed processes neither start
            nor answer elections.
    """

    node_id: int
    alive: bool = True

    def fail(self) -> None:
        self.alive = False

    def revive(self) -> None:
        self.alive = True

    def toggle(self) -> bool:
        """Flip between failed and alive.

        Returns:
            The new ``alive`` value.
        """
        self.alive = not self.alive
        return self.alive

    def __repr__(self) -> str:
        status = "alive" if self.alive else "failed"
        return f"ElectionNode({self.node_id}, {status})"


@dataclass
class ClockNode:
    """A process with a logical clock taking part in clock synchronization.

    Attributes:
        node_id: Identifier; 0 is always the reference node.
        logical_time: Local clock reading in epoch milliseconds, before
            any synchronization correction.
        base_offset: Drift from true time fixed at creation (0 for the
            reference node).
        applied_offset: Correction applied by synchronization rounds.
        role: Role in the current algorithm.
        last_rtt: Round-trip time measured in the last Cristian round.
        alive: Whether the process takes part in synchronization.
    """

    node_id: int
    logical_time: Milliseconds
    base_offset: Milliseconds = Milliseconds(0)
    applied_offset: Milliseconds = Milliseconds(0)
    role: NodeRole = NodeRole.CLIENT
    last_rtt: Milliseconds | None = None
    alive: bool = True

    @property
    def current_time(self) -> Milliseconds:
        """Corrected clock reading: local time plus applied offset."""
        return Milliseconds(self.logical_time + self.applied_offset)

    @property
    def is_reference(self) -> bool:
        return self.node_id == REFERENCE_NODE_ID

    def tick(self, elapsed_ms: int) -> None:
        """Advance the local clock by ``elapsed_ms`` of wall-clock time."""
        self.logical_time = Milliseconds(self.logical_time + elapsed_ms)

    def toggle(self) -> bool:
        self.alive = not self.alive
        return self.alive

    def __repr__(self) -> str:
        rtt_info = f", rtt={self.last_rtt}ms" if self.last_rtt is not None else ""
        return (
            f"ClockNode({self.node_id}, {self.role.value}, "
            f"drift={self.base_offset}ms, offset={self.applied_offset}ms{rtt_info})"
        )


def require_unique_ids(node_ids: Iterable[int]) -> None:
    """Raise ValueError if any node id appears more than once."""
    seen: set[int] = set()
    for node_id in node_ids:
        if node_id in seen:
            raise ValueError(f"Duplicate node id {node_id}")
        seen.add(node_id)


def generate_election_nodes(
    count: int, rng: np.random.Generator
) -> list[ElectionNode]:
    """Create ``count`` alive election nodes with distinct random ids.

    Candidate ids are drawn from [MIN_NODE_ID, MAX_NODE_ID] until enough
    distinct values have been seen. Nodes are returned in the order their
    ids were first drawn.

    Args:
        count: Number of nodes to create.
        rng: Random number generator for reproducibility.

    Returns:
        Newly generated nodes, all alive.
    """
    available = MAX_NODE_ID - MIN_NODE_ID + 1
    if not 0 <= count <= available:
        raise ValueError(f"Count must be between 0 and {available}, got {count}")

    # dict keeps first-draw order, unlike set
    ids: dict[int, None] = {}
    while len(ids) < count:
        ids.setdefault(int(rng.integers(MIN_NODE_ID, MAX_NODE_ID + 1)), None)

    return [ElectionNode(node_id=node_id) for node_id in ids]


def generate_clock_nodes(
    count: int,
    rng: np.random.Generator,
    now_ms: int,
    reference_role: NodeRole = NodeRole.SERVER,
    drift_dist: Distribution | None = None,
) -> list[ClockNode]:
    """Create the reference node plus ``count`` drifting client clocks.

    Args:
        count: Number of client clocks (the reference node is extra).
        rng: Random number generator for reproducibility.
        now_ms: True time in epoch milliseconds at creation.
        reference_role: Role given to node 0 (SERVER for Cristian,
            COORDINATOR for Berkeley).
        drift_dist: Distribution of each client's initial drift. Defaults
            to uniform over [-MAX_DRIFT_MS, MAX_DRIFT_MS).

    Returns:
        Node 0 followed by clients 1..count.
    """
    drift_dist = drift_dist or Uniform(-MAX_DRIFT_MS, MAX_DRIFT_MS)

    nodes = [
        ClockNode(
            node_id=REFERENCE_NODE_ID,
            logical_time=Milliseconds(now_ms),
            role=reference_role,
        )
    ]
    for node_id in range(1, count + 1):
        drift = drift_dist.sample(rng)
        nodes.append(
            ClockNode(
                node_id=node_id,
                logical_time=Milliseconds(now_ms + drift),
                base_offset=Milliseconds(drift),
            )
        )
    return nodes


def alive_nodes(nodes: Sequence[ElectionNode] | Sequence[ClockNode]) -> list:
    """Return the alive nodes in their original order."""
    return [node for node in nodes if node.alive]
