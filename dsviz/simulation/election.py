"""
Leader-election compilers: Bully and Ring.

Each compiler takes a read-only snapshot of the election nodes and an
initiator id and returns the full ``ActionSequence`` of the election.
Compilers never see the playback state; a rejected election compiles to
a single explanatory action.
"""

import logging
from enum import Enum
from typing import Callable, Sequence

from .actions import Action, ActionSequence, Message, MessageKind
from .node import ElectionNode, alive_nodes, require_unique_ids

logger = logging.getLogger(__name__)


class ElectionAlgorithm(Enum):
    """Supported leader-election algorithms."""

    BULLY = "bully"
    RING = "ring"


def _format_ids(ids: Sequence[int]) -> str:
    return "[" + ", ".join(str(i) for i in ids) + "]"


def _find_alive(alive: list[ElectionNode], node_id: int) -> ElectionNode | None:
    for node in alive:
        if node.node_id == node_id:
            return node
    return None


def _initiator_down(initiator_id: int) -> ActionSequence:
    logger.info("Election rejected: initiator %d is not alive", initiator_id)
    return (Action(f"Initiator node {initiator_id} is down and cannot start an election."),)


def compile_bully(nodes: Sequence[ElectionNode], initiator_id: int) -> ActionSequence:
    """Compile a Bully election started by ``initiator_id``.

    The initiator sends ELECTION to every alive node with a higher id and
    each of them answers OK. The alive node with the highest id becomes
    leader. When the initiator already has the highest id it declares
    itself leader without sending any message.

    Args:
        nodes: Election nodes; failed nodes take no part.
        initiator_id: Node that detected the leader failure.

    Returns:
        The compiled action sequence. A single action if the initiator
        is not alive.
    """
    require_unique_ids(node.node_id for node in nodes)
    alive = alive_nodes(nodes)

    initiator = _find_alive(alive, initiator_id)
    if initiator is None:
        return _initiator_down(initiator_id)

    superiors = [node for node in alive if node.node_id > initiator.node_id]
    winner = initiator
    for node in alive:
        if node.node_id > winner.node_id:
            winner = node

    actions = [
        Action(
            f"Node {initiator.node_id} detects the leader failure and starts a Bully election.",
            highlight_ids=(initiator.node_id,),
        )
    ]

    if not superiors:
        actions.append(
            Action(
                f"Node {initiator.node_id} finds no node with a higher id and becomes leader.",
                highlight_ids=(initiator.node_id,),
                leader_id=initiator.node_id,
            )
        )
        return tuple(actions)

    for superior in superiors:
        actions.append(
            Action(
                f"Node {initiator.node_id} sends ELECTION to node {superior.node_id}.",
                highlight_ids=(initiator.node_id, superior.node_id),
                message=Message(initiator.node_id, superior.node_id, MessageKind.ELECTION),
            )
        )
        actions.append(
            Action(
                f"Node {superior.node_id} answers OK to node {initiator.node_id}.",
                highlight_ids=(superior.node_id, initiator.node_id),
                message=Message(superior.node_id, initiator.node_id, MessageKind.OK),
            )
        )

    actions.append(
        Action(
            f"The highest alive id is {winner.node_id}. It becomes the new leader.",
            highlight_ids=(winner.node_id,),
            leader_id=winner.node_id,
        )
    )
    return tuple(actions)


def compile_ring(nodes: Sequence[ElectionNode], initiator_id: int) -> ActionSequence:
    """Compile a Ring election started by ``initiator_id``.

    Alive nodes form a logical ring in list order. In the collection
    phase a token travels once around the ring starting at the
    initiator, accumulating the id of every node it visits; the highest
    collected id wins. In the announcement phase a second token travels
    once around the ring starting at the winner. Every node learns the
    leader in one final step.

    Each phase sends exactly one message per alive node, so a ring of
    one node sends itself one message per phase.

    Args:
        nodes: Election nodes; failed nodes are skipped by the ring.
        initiator_id: Node that starts the collection token.

    Returns:
        The compiled action sequence. A single action if there are no
        alive nodes or the initiator is not alive.
    """
    require_unique_ids(node.node_id for node in nodes)
    alive = alive_nodes(nodes)

    if not alive:
        logger.info("Ring election rejected: no alive nodes")
        return (Action("There are no alive nodes in the ring."),)

    initiator = _find_alive(alive, initiator_id)
    if initiator is None:
        return _initiator_down(initiator_id)

    start = alive.index(initiator)
    ring = alive[start:] + alive[:start]
    n = len(ring)

    collected = [initiator.node_id]
    actions = [
        Action(
            f"Node {initiator.node_id} starts a Ring election. "
            f"The token initially holds {_format_ids(collected)}.",
            highlight_ids=(initiator.node_id,),
        )
    ]

    # Phase 1: collection
    for i in range(1, n + 1):
        sender = ring[i - 1]
        receiver = ring[i % n]
        actions.append(
            Action(
                f"ELECTION token passes from node {sender.node_id} to node "
                f"{receiver.node_id} carrying {_format_ids(collected)}.",
                highlight_ids=(sender.node_id, receiver.node_id),
                message=Message(
                    sender.node_id,
                    receiver.node_id,
                    MessageKind.RING_COLLECT,
                    payload=tuple(collected),
                ),
            )
        )
        if receiver.node_id not in collected:
            collected.append(receiver.node_id)

    leader_id = max(collected)
    actions.append(
        Action(
            f"The token returns to initiator {initiator.node_id} with "
            f"{_format_ids(collected)}. Elected leader: node {leader_id}.",
            highlight_ids=(initiator.node_id, leader_id),
        )
    )

    # Phase 2: announcement
    leader_index = next(i for i, node in enumerate(ring) if node.node_id == leader_id)
    actions.append(
        Action(
            f"Node {leader_id} starts announcing itself as leader around the ring.",
            highlight_ids=(leader_id,),
        )
    )
    for i in range(1, n + 1):
        sender = ring[(leader_index + i - 1) % n]
        receiver = ring[(leader_index + i) % n]
        actions.append(
            Action(
                f"LEADER announcement ({leader_id}) passes from node "
                f"{sender.node_id} to node {receiver.node_id}.",
                highlight_ids=(sender.node_id, receiver.node_id),
                message=Message(sender.node_id, receiver.node_id, MessageKind.RING_ANNOUNCE),
            )
        )

    actions.append(
        Action(
            f"Every node now knows node {leader_id} is the leader.",
            highlight_ids=tuple(node.node_id for node in ring),
            leader_id=leader_id,
        )
    )
    return tuple(actions)


ELECTION_COMPILERS: dict[
    ElectionAlgorithm, Callable[[Sequence[ElectionNode], int], ActionSequence]
] = {
    ElectionAlgorithm.BULLY: compile_bully,
    ElectionAlgorithm.RING: compile_ring,
}


def compile_election(
    algorithm: ElectionAlgorithm, nodes: Sequence[ElectionNode], initiator_id: int
) -> ActionSequence:
    """Compile an election with the compiler registered for ``algorithm``."""
    return ELECTION_COMPILERS[algorithm](nodes, initiator_id)
