"""
Interactive simulation sessions for leader election and clock sync.

A session is the caller the playback controller expects: it validates
the user's configuration, generates and mutates the node set, picks the
compiler for the selected algorithm, loads the compiled sequence into
its controller and keeps the user-facing trace log.

Invalid requests never raise: they are logged, reported in the trace
log and leave the session unchanged.
"""

import copy
import logging
import time
from dataclasses import dataclass

import numpy as np

from .simulation.actions import Action, ActionSequence
from .simulation.clock_sync import ClockAlgorithm, compile_clock_sync
from .simulation.election import ElectionAlgorithm, compile_election
from .simulation.node import (
    ClockNode,
    ElectionNode,
    MAX_NODE_ID,
    MIN_NODE_ID,
    NodeRole,
    REFERENCE_NODE_ID,
    generate_clock_nodes,
    generate_election_nodes,
    require_unique_ids,
)
from .simulation.playback import SPEEDS, PlaybackController, PlaybackStatus
from .simulation.state import SimulationState
from .simulation.trace import TraceLog

logger = logging.getLogger(__name__)

MIN_ELECTION_NODES = 3
MAX_ELECTION_NODES = 15
DEFAULT_ELECTION_NODES = 5

MIN_CLOCK_NODES = 2
MAX_CLOCK_NODES = 12
DEFAULT_CLOCK_NODES = 4

MIN_LATENCY_BOUND_MS = 10
MAX_LATENCY_BOUND_MS = 1000
DEFAULT_LATENCY_BOUND_MS = 100

# Wall-clock advance of every clock per UI tick
TICK_MS = 1000


def _reject(message: str) -> str:
    logger.warning("Configuration rejected: %s", message)
    return message


@dataclass
class ElectionConfig:
    """User-facing parameters of an election session.

    Attributes:
        num_nodes: Number of election nodes to generate.
        algorithm: Election algorithm to compile.
        speed: Playback speed multiplier.
        seed: Random seed for reproducible node ids.
    """

    num_nodes: int = DEFAULT_ELECTION_NODES
    algorithm: ElectionAlgorithm = ElectionAlgorithm.BULLY
    speed: float = 1.0
    seed: int | None = None

    def validate(self) -> list[str]:
        """Reset out-of-range fields to their defaults.

        Returns:
            One message per rejected field; empty if the config is valid.
        """
        problems = []
        if not MIN_ELECTION_NODES <= self.num_nodes <= MAX_ELECTION_NODES:
            problems.append(
                _reject(
                    f"Enter a node count between {MIN_ELECTION_NODES} and "
                    f"{MAX_ELECTION_NODES} (got {self.num_nodes})."
                )
            )
            self.num_nodes = DEFAULT_ELECTION_NODES
        if self.speed not in SPEEDS:
            problems.append(_reject(f"Speed must be one of {SPEEDS} (got {self.speed})."))
            self.speed = 1.0
        return problems


@dataclass
class ClockSyncConfig:
    """User-facing parameters of a clock synchronization session.

    Attributes:
        num_nodes: Number of client clocks (the reference node is extra).
        algorithm: Synchronization algorithm to compile.
        max_latency: Upper bound for simulated one-way delays, in ms.
        speed: Playback speed multiplier.
        seed: Random seed for reproducible drifts and delays.
    """

    num_nodes: int = DEFAULT_CLOCK_NODES
    algorithm: ClockAlgorithm = ClockAlgorithm.CRISTIAN
    max_latency: int = 200
    speed: float = 1.0
    seed: int | None = None

    def validate(self) -> list[str]:
        """Reset out-of-range fields to their defaults.

        Returns:
            One message per rejected field; empty if the config is valid.
        """
        problems = []
        if not MIN_CLOCK_NODES <= self.num_nodes <= MAX_CLOCK_NODES:
            problems.append(
                _reject(
                    f"Enter a node count between {MIN_CLOCK_NODES} and "
                    f"{MAX_CLOCK_NODES} (got {self.num_nodes})."
                )
            )
            self.num_nodes = DEFAULT_CLOCK_NODES
        if not MIN_LATENCY_BOUND_MS <= self.max_latency <= MAX_LATENCY_BOUND_MS:
            problems.append(
                _reject(
                    f"Enter a latency between {MIN_LATENCY_BOUND_MS} and "
                    f"{MAX_LATENCY_BOUND_MS} ms (got {self.max_latency})."
                )
            )
            self.max_latency = DEFAULT_LATENCY_BOUND_MS
        if self.speed not in SPEEDS:
            problems.append(_reject(f"Speed must be one of {SPEEDS} (got {self.speed})."))
            self.speed = 1.0
        return problems


class SimulationSession:
    """Playback and trace-log plumbing shared by both session kinds.

    Subclasses compile sequences and hand them to ``_load``.
    """

    # Shown when playback is requested before anything was compiled
    nothing_compiled_message = "Compile a sequence first."

    def __init__(self, rng: np.random.Generator, speed: float = 1.0):
        self.rng = rng
        self.trace = TraceLog()
        self.controller = PlaybackController(speed=speed)
        self.controller.subscribe(self._on_step)

    @property
    def state(self) -> SimulationState:
        return self.controller.state

    @property
    def status(self) -> PlaybackStatus:
        return self.controller.status

    def _on_step(self, state: SimulationState, lines: list[str]) -> None:
        self.trace.extend(lines)

    def _load(self, sequence: ActionSequence, message: str) -> ActionSequence:
        if self.controller.load(sequence):
            self.trace.push(message)
        return sequence

    def play(self) -> bool:
        """Start automatic playback. Needs a running asyncio event loop."""
        if not self.controller.is_loaded:
            self.trace.push(self.nothing_compiled_message)
            return False
        return self.controller.play()

    def pause(self) -> None:
        self.controller.pause()

    def step(self) -> list[str] | None:
        if not self.controller.is_loaded:
            self.trace.push(self.nothing_compiled_message)
            return None
        return self.controller.step()

    def run_to_completion(self) -> list[str]:
        return self.controller.run_to_completion()

    def set_speed(self, speed: float) -> bool:
        if not self.controller.set_speed(speed):
            self.trace.push(f"Speed must be one of {SPEEDS}.")
            return False
        return True

    def clear_log(self) -> None:
        self.trace.clear()


class ElectionSession(SimulationSession):
    """Leader-election session (Bully or Ring).

    Typical use::

        session = ElectionSession(ElectionConfig(num_nodes=5, seed=7))
        session.generate_nodes()
        session.select_initiator(session.nodes[0].node_id)
        session.start_election()
        session.run_to_completion()
        session.leader_id

    Attributes:
        config: Session parameters.
        nodes: Current election nodes.
        initiator_id: Node selected to start the next election.
    """

    nothing_compiled_message = "Start an election first."

    def __init__(
        self,
        config: ElectionConfig | None = None,
        rng: np.random.Generator | None = None,
    ):
        self.config = config or ElectionConfig()
        self.config.validate()
        super().__init__(
            rng if rng is not None else np.random.default_rng(self.config.seed),
            speed=self.config.speed,
        )
        self.nodes: list[ElectionNode] = []
        self.initiator_id: int | None = None

    @property
    def leader_id(self) -> int | None:
        return self.state.leader_id

    def get_node(self, node_id: int) -> ElectionNode:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        raise KeyError(f"Unknown node {node_id}")

    def _replace_nodes(self, nodes: list[ElectionNode]) -> None:
        self.nodes = nodes
        self.initiator_id = None
        self.controller.reset()
        self.trace.reset(
            [
                "Nodes generated (all alive, no initial leader).",
                "Select an initiator, then start the election.",
            ]
        )

    def generate_nodes(self) -> bool:
        """Replace the node set with freshly generated nodes.

        Returns:
            False if the node count was rejected.
        """
        problems = self.config.validate()
        if problems:
            self.trace.extend(problems)
            return False
        self._replace_nodes(generate_election_nodes(self.config.num_nodes, self.rng))
        logger.info("Generated election nodes %s", [n.node_id for n in self.nodes])
        return True

    def set_nodes(self, node_ids: list[int]) -> bool:
        """Replace the node set with alive nodes carrying ``node_ids``.

        Returns:
            False if the ids were rejected; the node set is unchanged.
        """
        problems = []
        if not MIN_ELECTION_NODES <= len(node_ids) <= MAX_ELECTION_NODES:
            problems.append(
                _reject(
                    f"Enter a node count between {MIN_ELECTION_NODES} and "
                    f"{MAX_ELECTION_NODES} (got {len(node_ids)})."
                )
            )
        out_of_range = [i for i in node_ids if not MIN_NODE_ID <= i <= MAX_NODE_ID]
        if out_of_range:
            problems.append(
                _reject(
                    f"Node ids must be between {MIN_NODE_ID} and {MAX_NODE_ID} "
                    f"(got {out_of_range})."
                )
            )
        try:
            require_unique_ids(node_ids)
        except ValueError as e:
            problems.append(_reject(f"{e}."))
        if problems:
            self.trace.extend(problems)
            return False

        self._replace_nodes([ElectionNode(node_id=node_id) for node_id in node_ids])
        return True

    def toggle_node(self, node_id: int) -> bool:
        """Fail an alive node or revive a failed one.

        Failing the current leader leaves the system without a leader.

        Returns:
            The node's new ``alive`` value.
        """
        node = self.get_node(node_id)
        alive = node.toggle()
        self.trace.push(f"Node {node_id} {'revived' if alive else 'marked as failed'}.")

        if not alive and self.leader_id == node_id:
            self.controller.apply_immediate(
                Action(f"Leader {node_id} has failed. There is no current leader.", leader_id=None)
            )
        return alive

    def select_initiator(self, node_id: int) -> bool:
        """Choose the node that starts the next election."""
        node = next((n for n in self.nodes if n.node_id == node_id), None)
        if node is None or not node.alive:
            self.trace.push(f"Cannot select node {node_id} as initiator (it is down).")
            return False
        self.initiator_id = node_id
        self.trace.push(f"Node {node_id} selected as election initiator.")
        return True

    def set_algorithm(self, algorithm: ElectionAlgorithm) -> None:
        """Switch algorithm, discarding the compiled sequence and playback state."""
        self.config.algorithm = algorithm
        self.controller.reset()

    def start_election(self) -> ActionSequence | None:
        """Compile an election from the selected initiator and load it.

        Returns:
            The compiled sequence, or None if a precondition failed.
        """
        if self.initiator_id is None:
            self.trace.push("Select an initiator node first.")
            return None
        if not self.nodes:
            self.trace.push("Generate the nodes first.")
            return None

        sequence = compile_election(
            self.config.algorithm, copy.deepcopy(self.nodes), self.initiator_id
        )
        return self._load(sequence, "Election sequence generated.")


class ClockSyncSession(SimulationSession):
    """Clock synchronization session (Cristian or Berkeley).

    Applied offsets and RTTs are written back onto ``nodes`` as each
    action is played, so later rounds start from the corrected clocks.

    Attributes:
        config: Session parameters.
        nodes: Current clock nodes; node 0 is the reference.
    """

    nothing_compiled_message = "Synchronize first."

    def __init__(
        self,
        config: ClockSyncConfig | None = None,
        rng: np.random.Generator | None = None,
        now_ms: int | None = None,
    ):
        self.config = config or ClockSyncConfig()
        self.config.validate()
        super().__init__(
            rng if rng is not None else np.random.default_rng(self.config.seed),
            speed=self.config.speed,
        )
        self.now_ms = now_ms
        self.nodes: list[ClockNode] = []

    @staticmethod
    def reference_role(algorithm: ClockAlgorithm) -> NodeRole:
        if algorithm is ClockAlgorithm.CRISTIAN:
            return NodeRole.SERVER
        return NodeRole.COORDINATOR

    def _on_step(self, state: SimulationState, lines: list[str]) -> None:
        super()._on_step(state, lines)
        for node in self.nodes:
            if node.node_id in state.offsets:
                node.applied_offset = state.offsets[node.node_id]
            if node.node_id in state.rtts:
                node.last_rtt = state.rtts[node.node_id]

    def _seeded_state(self) -> SimulationState:
        return SimulationState(
            offsets={n.node_id: n.applied_offset for n in self.nodes},
            rtts={n.node_id: n.last_rtt for n in self.nodes if n.last_rtt is not None},
        )

    def get_node(self, node_id: int) -> ClockNode:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        raise KeyError(f"Unknown clock {node_id}")

    def generate_clocks(self) -> bool:
        """Replace the clocks with node 0 plus freshly drifted clients.

        Returns:
            False if the node count or latency was rejected.
        """
        problems = self.config.validate()
        if problems:
            self.trace.extend(problems)
            return False

        now = self.now_ms if self.now_ms is not None else int(time.time() * 1000)
        role = self.reference_role(self.config.algorithm)
        self.nodes = generate_clock_nodes(
            self.config.num_nodes, self.rng, now, reference_role=role
        )
        self.controller.reset()
        self.trace.reset(
            [
                "Clocks generated with random offsets.",
                f"Node {REFERENCE_NODE_ID} acts as {role.value}.",
                "Synchronize to start the algorithm.",
            ]
        )
        logger.info(
            "Generated %d clocks, drifts %s",
            len(self.nodes),
            [n.base_offset for n in self.nodes],
        )
        return True

    def tick(self, elapsed_ms: int = TICK_MS) -> None:
        """Advance every clock by ``elapsed_ms`` of wall-clock time."""
        for node in self.nodes:
            node.tick(elapsed_ms)

    def toggle_node(self, node_id: int) -> bool:
        """Take a clock out of, or back into, synchronization rounds."""
        node = self.get_node(node_id)
        alive = node.toggle()
        self.trace.push(f"Clock {node_id} {'revived' if alive else 'marked as failed'}.")
        return alive

    def set_algorithm(self, algorithm: ClockAlgorithm) -> None:
        """Switch algorithm, discarding the compiled sequence.

        Node 0 takes the reference role of the new algorithm.
        """
        self.config.algorithm = algorithm
        for node in self.nodes:
            if node.node_id == REFERENCE_NODE_ID:
                node.role = self.reference_role(algorithm)
        self.controller.reset(self._seeded_state())

    def synchronize(self) -> ActionSequence | None:
        """Compile one synchronization round and load it.

        Returns:
            The compiled sequence, or None if no clocks exist yet.
        """
        if not self.nodes:
            self.trace.push("Generate the clocks first.")
            return None

        self.trace.push(f"Running the {self.config.algorithm.value.capitalize()} algorithm...")
        sequence = compile_clock_sync(
            self.config.algorithm,
            copy.deepcopy(self.nodes),
            self.config.max_latency,
            self.rng,
        )
        return self._load(sequence, "Synchronization sequence generated.")
