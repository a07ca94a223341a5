"""
Algorithm simulation package for distributed-systems teaching.

This package compiles leader-election (Bully, Ring) and clock
synchronization (Cristian, Berkeley) runs into replayable action
sequences and replays them through a playback controller.
"""

from .distributions import (
    Milliseconds,
    round_half_up,
    Distribution,
    Uniform,
    Latency,
    Constant,
)
from .node import (
    ElectionNode,
    ClockNode,
    NodeRole,
    generate_election_nodes,
    generate_clock_nodes,
)
from .actions import (
    UNSET,
    Action,
    ActionSequence,
    Message,
    MessageKind,
    messages_of_kind,
    final_leader,
)
from .election import ElectionAlgorithm, compile_bully, compile_ring, compile_election
from .clock_sync import (
    ClockAlgorithm,
    compile_cristian,
    compile_berkeley,
    compile_clock_sync,
    cristian_offset,
    berkeley_average,
)
from .state import SimulationState, apply_action, advance_cursor
from .playback import PlaybackController, PlaybackStatus, BASE_DELAY_MS, SPEEDS
from .trace import TraceLog

__all__ = [
    # Time units
    "Milliseconds",
    "round_half_up",
    # Distributions
    "Distribution",
    "Uniform",
    "Latency",
    "Constant",
    # Nodes
    "ElectionNode",
    "ClockNode",
    "NodeRole",
    "generate_election_nodes",
    "generate_clock_nodes",
    # Actions
    "UNSET",
    "Action",
    "ActionSequence",
    "Message",
    "MessageKind",
    "messages_of_kind",
    "final_leader",
    # Election
    "ElectionAlgorithm",
    "compile_bully",
    "compile_ring",
    "compile_election",
    # Clock sync
    "ClockAlgorithm",
    "compile_cristian",
    "compile_berkeley",
    "compile_clock_sync",
    "cristian_offset",
    "berkeley_average",
    # State
    "SimulationState",
    "apply_action",
    "advance_cursor",
    # Playback
    "PlaybackController",
    "PlaybackStatus",
    "BASE_DELAY_MS",
    "SPEEDS",
    # Trace
    "TraceLog",
]
