"""
Clock-synchronization compilers: Cristian and Berkeley.

Each compiler reads a snapshot of the clock nodes, samples simulated
network delays from the injected random generator and returns the full
``ActionSequence`` of one synchronization round. Offsets computed here
only reach the nodes when the playback controller applies the actions.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Sequence

import numpy as np

from .actions import Action, ActionSequence, Message, MessageKind
from .distributions import Distribution, Latency, Milliseconds, round_half_up
from .node import ClockNode, alive_nodes, require_unique_ids

logger = logging.getLogger(__name__)


class ClockAlgorithm(Enum):
    """Supported clock-synchronization algorithms."""

    CRISTIAN = "cristian"
    BERKELEY = "berkeley"


def format_clock(time_ms: int) -> str:
    """Render an epoch-millisecond reading as HH:MM:SS.mmm (UTC)."""
    moment = datetime.fromtimestamp(time_ms / 1000, tz=timezone.utc)
    return moment.strftime("%H:%M:%S.") + f"{moment.microsecond // 1000:03d}"


def _signed(value: int) -> str:
    return f"+{value}" if value > 0 else str(value)


def cristian_offset(
    client_send_time: int, server_time: int, round_trip_time: int
) -> Milliseconds:
    """Cristian's estimate of the client's clock error.

    Assumes the reply spent half the round trip in flight, so the true
    time at the client is ``server_time`` plus the remaining half.

    Args:
        client_send_time: Client clock reading when the request left.
        server_time: Server clock reading when the request arrived.
        round_trip_time: Total request plus reply delay.

    Returns:
        The correction to add to the client clock, rounded half up.
    """
    return Milliseconds(
        round_half_up(server_time - (client_send_time + round_trip_time / 2))
    )


def compile_cristian(
    nodes: Sequence[ClockNode],
    max_latency: int,
    rng: np.random.Generator,
    delay_dist: Distribution | None = None,
) -> ActionSequence:
    """Compile one Cristian synchronization round.

    Every alive node, the server included, sends a REQUEST to the
    reference node and receives its time in a RESPONSE; it then corrects
    its clock by the Cristian offset and records the round-trip time.

    Args:
        nodes: Clock nodes; ``nodes[0]`` is the reference server.
        max_latency: Upper bound (exclusive) for one-way delays, in ms.
        rng: Random generator for delay sampling.
        delay_dist: Delay distribution override. Defaults to
            ``Latency(max_latency)``.

    Returns:
        The compiled action sequence.
    """
    require_unique_ids(node.node_id for node in nodes)
    alive = alive_nodes(nodes)

    if not alive:
        logger.info("Cristian round rejected: no alive nodes")
        return (Action("There are no alive nodes to synchronize with Cristian."),)

    delay_dist = delay_dist or Latency(max_latency)
    reference = nodes[0]
    true_time = reference.logical_time - reference.base_offset

    actions = [
        Action(
            f"Reference server {reference.node_id} established. "
            "Its clock is the system's true time."
        )
    ]

    for node in alive:
        outbound = delay_dist.sample(rng)
        inbound = delay_dist.sample(rng)

        client_send_time = node.current_time
        server_time = true_time + outbound
        round_trip_time = outbound + inbound
        theta = cristian_offset(client_send_time, server_time, round_trip_time)

        actions.append(
            Action(
                f"Node {node.node_id} sends REQUEST to the server | "
                f"latency: out={outbound}ms, back={inbound}ms",
                highlight_ids=(node.node_id,),
                message=Message(node.node_id, reference.node_id, MessageKind.REQUEST),
            )
        )
        actions.append(
            Action(
                f"Server answers node {node.node_id} | server time: {format_clock(server_time)}",
                highlight_ids=(node.node_id,),
                message=Message(
                    reference.node_id,
                    node.node_id,
                    MessageKind.RESPONSE,
                    timestamp=server_time,
                ),
            )
        )
        actions.append(
            Action(
                f"Node {node.node_id} adjusts its clock | "
                f"RTT={round_trip_time}ms, computed offset={theta}ms",
                highlight_ids=(node.node_id,),
                adjustments={node.node_id: theta},
                rtt_values={node.node_id: round_trip_time},
            )
        )

    actions.append(Action("All nodes applied their Cristian adjustments."))
    return tuple(actions)


def berkeley_average(reported_times: Sequence[int]) -> Milliseconds:
    """Mean of the reported clock readings, rounded half up."""
    return Milliseconds(round_half_up(float(np.mean(reported_times))))


def compile_berkeley(
    nodes: Sequence[ClockNode],
    max_latency: int,
    rng: np.random.Generator,
    delay_dist: Distribution | None = None,
) -> ActionSequence:
    """Compile one Berkeley synchronization round.

    The first alive node coordinates: it polls every other alive node
    for its time, averages all readings including its own, sends each
    node the correction that brings it to the average, and finally all
    nodes apply their corrections at once.

    Polling delays are sampled for display only; Berkeley as modelled
    here does not compensate readings for transit time.

    Args:
        nodes: Clock nodes.
        max_latency: Upper bound (exclusive) for one-way delays, in ms.
        rng: Random generator for delay sampling.
        delay_dist: Delay distribution override. Defaults to
            ``Latency(max_latency)``.

    Returns:
        The compiled action sequence.
    """
    require_unique_ids(node.node_id for node in nodes)
    alive = alive_nodes(nodes)

    if not alive:
        logger.info("Berkeley round rejected: no alive nodes")
        return (Action("There are no alive nodes to run Berkeley."),)

    delay_dist = delay_dist or Latency(max_latency)
    coordinator = alive[0]
    coord_id = coordinator.node_id

    actions = [
        Action(
            f"Node {coord_id} acts as the Berkeley coordinator.",
            highlight_ids=(coord_id,),
        )
    ]

    # Phase 1: poll
    reported_times: dict[int, int] = {}
    for node in alive:
        if node.node_id == coord_id:
            continue

        outbound = delay_dist.sample(rng)
        inbound = delay_dist.sample(rng)
        node_time = node.current_time

        actions.append(
            Action(
                f"Coordinator {coord_id} sends POLL to node {node.node_id} | "
                f"latency: out={outbound}ms, back={inbound}ms",
                highlight_ids=(coord_id, node.node_id),
                message=Message(coord_id, node.node_id, MessageKind.POLL),
            )
        )
        actions.append(
            Action(
                f"Node {node.node_id} answers with its local time: {format_clock(node_time)}",
                highlight_ids=(coord_id, node.node_id),
                message=Message(
                    node.node_id, coord_id, MessageKind.RESPONSE, timestamp=node_time
                ),
            )
        )
        reported_times[node.node_id] = node_time

    reported_times[coord_id] = coordinator.current_time

    actions.append(
        Action(
            f"Coordinator {coord_id} collected {len(reported_times)} times from the nodes.",
            highlight_ids=(coord_id,),
        )
    )

    # Phase 2: average
    average = berkeley_average(list(reported_times.values()))
    actions.append(
        Action(
            f"Average computed: {format_clock(average)} | {len(reported_times)} nodes",
            highlight_ids=(coord_id,),
        )
    )

    # Phase 3: distribute
    adjustments: dict[int, int] = {}
    for node in alive:
        adjustment = average - node.current_time
        adjustments[node.node_id] = adjustment
        actions.append(
            Action(
                f"Coordinator {coord_id} sends adjustment to node {node.node_id} | "
                f"offset={_signed(adjustment)}ms",
                highlight_ids=(coord_id, node.node_id),
                message=Message(coord_id, node.node_id, MessageKind.OFFSET),
            )
        )

    # Phase 4: apply
    actions.append(
        Action(
            "Nodes apply their Berkeley adjustments.",
            highlight_ids=tuple(node.node_id for node in alive),
            adjustments=adjustments,
        )
    )
    return tuple(actions)


CLOCK_COMPILERS: dict[
    ClockAlgorithm,
    Callable[[Sequence[ClockNode], int, np.random.Generator], ActionSequence],
] = {
    ClockAlgorithm.CRISTIAN: compile_cristian,
    ClockAlgorithm.BERKELEY: compile_berkeley,
}


def compile_clock_sync(
    algorithm: ClockAlgorithm,
    nodes: Sequence[ClockNode],
    max_latency: int,
    rng: np.random.Generator,
) -> ActionSequence:
    """Compile a synchronization round with the compiler for ``algorithm``."""
    return CLOCK_COMPILERS[algorithm](nodes, max_latency, rng)
