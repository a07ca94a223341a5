"""
Action records produced by the algorithm compilers.

An action is one replayable simulation step: a description, the nodes
to highlight, an optional message in flight and optional effects on the
simulation state (leader change, clock offsets, round-trip times).
Compilers return an ``ActionSequence``, a tuple of actions that is never
mutated after compilation.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class MessageKind(Enum):
    """Kinds of message exchanged between simulated nodes."""

    # Bully election
    ELECTION = "election"  # Initiator asks a higher-id node to take over
    OK = "ok"  # Higher-id node answers that it is alive

    # Ring election
    RING_COLLECT = "ring_collect"  # Phase 1: token collecting alive ids
    RING_ANNOUNCE = "ring_announce"  # Phase 2: token announcing the leader

    # Clock synchronization
    REQUEST = "request"  # Cristian client asks the server for its time
    RESPONSE = "response"  # Time reply (Cristian server or Berkeley client)
    POLL = "poll"  # Berkeley coordinator asks a node for its time
    OFFSET = "offset"  # Berkeley coordinator sends a correction


class _Unset(Enum):
    UNSET = "unset"


# Marks an action that leaves the leader untouched (None means "no leader")
UNSET = _Unset.UNSET


@dataclass(frozen=True)
class Message:
    """A message in flight between two nodes.

    Attributes:
        from_id: Sending node.
        to_id: Receiving node (equal to ``from_id`` for a self-loop).
        kind: Message kind.
        payload: Ordered node ids carried by the message (ring collection).
        timestamp: Clock reading carried by the message, for display.
    """

    from_id: int
    to_id: int
    kind: MessageKind
    payload: tuple[int, ...] | None = None
    timestamp: int | None = None

    def __repr__(self) -> str:
        payload_info = f", payload={list(self.payload)}" if self.payload is not None else ""
        return f"Message({self.kind.value}: {self.from_id} -> {self.to_id}{payload_info})"


@dataclass(frozen=True)
class Action:
    """One compiled simulation step.

    Attributes:
        description: Human-readable account of the step.
        highlight_ids: Nodes to highlight while the step is shown. None
            clears all highlights.
        message: Message in flight during the step, if any.
        leader_id: New election leader. ``UNSET`` leaves the leader
            unchanged; None explicitly clears it.
        adjustments: New applied clock offset per node id.
        rtt_values: Measured round-trip time per node id.
    """

    description: str
    highlight_ids: tuple[int, ...] | None = None
    message: Message | None = None
    leader_id: int | None | _Unset = UNSET
    adjustments: Mapping[int, int] | None = None
    rtt_values: Mapping[int, int] | None = None

    def __post_init__(self) -> None:
        # Freeze container fields so a compiled sequence cannot be edited
        if self.highlight_ids is not None:
            object.__setattr__(self, "highlight_ids", tuple(self.highlight_ids))
        if self.adjustments is not None:
            object.__setattr__(
                self, "adjustments", MappingProxyType(dict(self.adjustments))
            )
        if self.rtt_values is not None:
            object.__setattr__(
                self, "rtt_values", MappingProxyType(dict(self.rtt_values))
            )

    @property
    def changes_leader(self) -> bool:
        """True if applying this action overwrites the election leader."""
        return self.leader_id is not UNSET

    def __repr__(self) -> str:
        parts = [repr(self.description)]
        if self.message is not None:
            parts.append(repr(self.message))
        if self.changes_leader:
            parts.append(f"leader={self.leader_id}")
        if self.adjustments is not None:
            parts.append(f"adjustments={dict(self.adjustments)}")
        return f"Action({', '.join(parts)})"


ActionSequence = tuple[Action, ...]


def messages_of_kind(sequence: ActionSequence, kind: MessageKind) -> list[Message]:
    """Return, in order, the messages of ``kind`` carried by ``sequence``."""
    return [
        action.message
        for action in sequence
        if action.message is not None and action.message.kind is kind
    ]


def final_leader(sequence: ActionSequence) -> int | None | _Unset:
    """Return the leader set by the last leader-changing action, or UNSET."""
    for action in reversed(sequence):
        if action.changes_leader:
            return action.leader_id
    return UNSET
