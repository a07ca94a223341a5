"""
Simulation state and the pure fold that applies actions to it.

``SimulationState`` is what the presentation layer observes: the current
leader, per-node clock offsets and round-trip times, highlighted nodes,
the message in flight and the playback cursor. ``apply_action`` folds
one action into a state and returns a new state; ``advance_cursor``
moves the cursor. The playback controller composes the two.
"""

from dataclasses import dataclass, field, replace

from .actions import Action, ActionSequence, Message


@dataclass(frozen=True)
class SimulationState:
    """Observable state of a playback.

    Attributes:
        leader_id: Current election leader, or None.
        recent_leader_id: Leader crowned by the most recently applied
            action, or None if that action did not change the leader.
        offsets: Applied clock offset per node id.
        rtts: Last measured round-trip time per node id.
        highlighted: Node ids highlighted by the last applied action.
        message: Message in flight during the last applied action.
        cursor: Index of the next action to apply.
    """

    leader_id: int | None = None
    recent_leader_id: int | None = None
    offsets: dict[int, int] = field(default_factory=dict)
    rtts: dict[int, int] = field(default_factory=dict)
    highlighted: frozenset[int] = frozenset()
    message: Message | None = None
    cursor: int = 0

    def offset_of(self, node_id: int) -> int:
        return self.offsets.get(node_id, 0)

    def cleared(self) -> "SimulationState":
        """Copy with highlights, message and cursor reset.

        Leader, offsets and RTTs carry over so that a freshly loaded
        sequence continues from the state the previous one left.
        """
        return replace(
            self,
            recent_leader_id=None,
            highlighted=frozenset(),
            message=None,
            cursor=0,
        )


def _signed(value: int) -> str:
    return f"+{value}" if value > 0 else str(value)


def trace_lines(state: SimulationState, action: Action) -> list[str]:
    """Human-readable lines describing the effect of ``action`` on ``state``.

    Adjusting actions produce one line per adjusted node showing the
    offset before and after; every other action produces its bare
    description.
    """
    if action.adjustments is None:
        return [action.description]

    lines = []
    for node_id, new_offset in action.adjustments.items():
        before = state.offset_of(node_id)
        delta = new_offset - before
        lines.append(
            f"{action.description} | Node {node_id}: offset {before}ms → "
            f"{new_offset}ms ({_signed(delta)}ms)"
        )
    return lines


def apply_action(
    state: SimulationState, action: Action
) -> tuple[SimulationState, list[str]]:
    """Fold one action into the state.

    Effects are applied in a fixed order: trace lines (computed against
    the state before any change), highlights, message in flight, offsets
    and RTTs, then leader. The cursor is left untouched; see
    ``advance_cursor``.

    Args:
        state: State before the action.
        action: Action to apply.

    Returns:
        The new state and the trace lines for the action.
    """
    lines = trace_lines(state, action)

    highlighted = frozenset(action.highlight_ids or ())

    offsets = state.offsets
    if action.adjustments is not None:
        offsets = {**offsets, **action.adjustments}

    rtts = state.rtts
    if action.rtt_values is not None:
        rtts = {**rtts, **action.rtt_values}

    leader_id = state.leader_id
    recent_leader_id = None
    if action.changes_leader:
        leader_id = action.leader_id
        recent_leader_id = action.leader_id

    new_state = replace(
        state,
        leader_id=leader_id,
        recent_leader_id=recent_leader_id,
        offsets=offsets,
        rtts=rtts,
        highlighted=highlighted,
        message=action.message,
    )
    return new_state, lines


def advance_cursor(sequence: ActionSequence, cursor: int) -> int:
    """Return the cursor after the action at ``cursor`` has been applied."""
    if not 0 <= cursor < len(sequence):
        raise IndexError(f"Cursor {cursor} outside sequence of length {len(sequence)}")
    return cursor + 1
