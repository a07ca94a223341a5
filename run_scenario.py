"""Run an election or clock synchronization scenario and print its trace."""

import argparse
import asyncio
import logging

from dsviz.session import (
    ClockSyncConfig,
    ClockSyncSession,
    ElectionConfig,
    ElectionSession,
    SimulationSession,
)
from dsviz.simulation import ClockAlgorithm, ElectionAlgorithm


async def _play_realtime(session: SimulationSession) -> None:
    if session.play():
        await session.controller.wait()


def _play(session: SimulationSession, realtime: bool) -> None:
    if realtime:
        asyncio.run(_play_realtime(session))
    else:
        session.run_to_completion()


def run_election(args) -> ElectionSession:
    config = ElectionConfig(
        num_nodes=args.nodes,
        algorithm=ElectionAlgorithm(args.algorithm),
        speed=args.speed,
        seed=args.seed,
    )
    session = ElectionSession(config)

    if args.ids:
        if not session.set_nodes(args.ids):
            return session
    elif not session.generate_nodes():
        return session

    known = {n.node_id for n in session.nodes}
    for node_id in args.fail:
        if node_id in known:
            session.toggle_node(node_id)
        else:
            session.trace.push(f"Cannot fail node {node_id}: no such node.")

    initiator = args.initiator
    if initiator is None:
        initiator = next((n.node_id for n in session.nodes if n.alive), None)
    if initiator is not None and session.select_initiator(initiator):
        if session.start_election() is not None:
            _play(session, args.realtime)
    return session


def run_clock(args) -> ClockSyncSession:
    config = ClockSyncConfig(
        num_nodes=args.nodes,
        algorithm=ClockAlgorithm(args.algorithm),
        max_latency=args.max_latency,
        speed=args.speed,
        seed=args.seed,
    )
    session = ClockSyncSession(config)
    if not session.generate_clocks():
        return session

    for _ in range(args.rounds):
        if session.synchronize() is None:
            break
        _play(session, args.realtime)
        session.tick()
    return session


def print_report(session: SimulationSession) -> None:
    for line in session.trace:
        print(line)
    print()
    if isinstance(session, ElectionSession):
        print(f"Nodes: {session.nodes}")
        print(f"Leader: {session.leader_id}")
    else:
        for node in session.nodes:
            print(node)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Replay a distributed algorithm step by step.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--speed", type=float, default=1.0, help="Playback speed: 0.5, 1 or 2")
    parser.add_argument(
        "--realtime", action="store_true", help="Play with delays instead of instantly"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    election = subparsers.add_parser("election", help="Leader election (Bully or Ring)")
    election.add_argument(
        "--algorithm", choices=[a.value for a in ElectionAlgorithm], default="bully"
    )
    election.add_argument("--nodes", type=int, default=5, help="Number of nodes (3-15)")
    election.add_argument("--ids", type=int, nargs="+", help="Explicit node ids")
    election.add_argument("--initiator", type=int, default=None, help="Initiator node id")
    election.add_argument(
        "--fail", type=int, nargs="*", default=[], help="Node ids to fail before the election"
    )
    election.set_defaults(handler=run_election)

    clock = subparsers.add_parser("clock", help="Clock synchronization (Cristian or Berkeley)")
    clock.add_argument(
        "--algorithm", choices=[a.value for a in ClockAlgorithm], default="cristian"
    )
    clock.add_argument("--nodes", type=int, default=4, help="Number of client clocks (2-12)")
    clock.add_argument(
        "--max-latency", type=int, default=200, help="Maximum one-way delay in ms (10-1000)"
    )
    clock.add_argument("--rounds", type=int, default=1, help="Synchronization rounds")
    clock.set_defaults(handler=run_clock)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print_report(args.handler(args))
