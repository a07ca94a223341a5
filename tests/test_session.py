"""
End-to-end tests for election and clock synchronization sessions.

Sessions validate configuration, own the node set and trace log, and
drive the playback controller; these tests go through the same calls a
presentation layer would make.
"""

import argparse
import asyncio

import numpy as np

from dsviz.session import (
    DEFAULT_CLOCK_NODES,
    DEFAULT_ELECTION_NODES,
    DEFAULT_LATENCY_BOUND_MS,
    ClockSyncConfig,
    ClockSyncSession,
    ElectionConfig,
    ElectionSession,
)
from dsviz.simulation import (
    ClockAlgorithm,
    ElectionAlgorithm,
    NodeRole,
    PlaybackStatus,
)
from run_scenario import run_election

NOW = 1_700_000_000_000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _election(*ids: int, algorithm=ElectionAlgorithm.BULLY) -> ElectionSession:
    session = ElectionSession(ElectionConfig(algorithm=algorithm, seed=1))
    session.set_nodes(list(ids))
    return session


def _elect(session: ElectionSession, initiator: int) -> int | None:
    assert session.select_initiator(initiator)
    assert session.start_election() is not None
    session.run_to_completion()
    return session.leader_id


def _clock_session(algorithm=ClockAlgorithm.CRISTIAN, **kwargs) -> ClockSyncSession:
    config = ClockSyncConfig(algorithm=algorithm, seed=5, **kwargs)
    session = ClockSyncSession(config, now_ms=NOW)
    assert session.generate_clocks()
    return session


# ===========================================================================
# Election configuration
# ===========================================================================


class TestElectionConfig:
    def test_valid_config(self):
        assert ElectionConfig(num_nodes=15, speed=0.5).validate() == []

    def test_out_of_range_nodes_reset(self):
        config = ElectionConfig(num_nodes=16)
        problems = config.validate()
        assert len(problems) == 1
        assert config.num_nodes == DEFAULT_ELECTION_NODES

    def test_bad_speed_reset(self):
        config = ElectionConfig(speed=3.0)
        assert config.validate()
        assert config.speed == 1.0


# ===========================================================================
# Election sessions
# ===========================================================================


class TestElectionSession:
    def test_generate_nodes(self):
        session = ElectionSession(ElectionConfig(num_nodes=7, seed=3))

        assert session.generate_nodes()

        ids = [n.node_id for n in session.nodes]
        assert len(set(ids)) == 7
        assert session.leader_id is None
        assert session.trace.lines[0].startswith("[t=0] Nodes generated")
        assert len(session.trace) == 2

    def test_seeded_generation_is_reproducible(self):
        first = ElectionSession(ElectionConfig(seed=3))
        second = ElectionSession(ElectionConfig(seed=3))
        first.generate_nodes()
        second.generate_nodes()
        assert first.nodes == second.nodes

    def test_rejected_node_count_leaves_nodes(self):
        session = _election(12, 55, 30)
        session.config.num_nodes = 2

        assert session.generate_nodes() is False

        assert [n.node_id for n in session.nodes] == [12, 55, 30]
        assert session.config.num_nodes == DEFAULT_ELECTION_NODES
        assert "between 3 and 15" in session.trace.last

    def test_bully_end_to_end(self):
        session = _election(12, 55, 30, 81)

        assert _elect(session, 30) == 81
        assert session.status is PlaybackStatus.FINISHED

        session.toggle_node(81)
        assert session.leader_id is None
        assert any("Leader 81 has failed" in line for line in session.trace)

        assert _elect(session, 30) == 55

    def test_ring_end_to_end(self):
        session = _election(13, 47, 22, 99, algorithm=ElectionAlgorithm.RING)
        assert _elect(session, 47) == 99
        assert session.state.highlighted == {13, 47, 22, 99}

    def test_trace_records_every_action(self):
        session = _election(12, 55, 30, 81)
        session.select_initiator(30)
        sequence = session.start_election()
        before = len(session.trace)

        session.run_to_completion()

        assert len(session.trace) == before + len(sequence)
        assert session.trace.last.endswith(sequence[-1].description)

    def test_failing_non_leader_keeps_leader(self):
        session = _election(12, 55, 30, 81)
        _elect(session, 30)

        assert session.toggle_node(12) is False
        assert session.leader_id == 81
        assert session.trace.last.endswith("Node 12 marked as failed.")

        assert session.toggle_node(12) is True
        assert session.trace.last.endswith("Node 12 revived.")

    def test_dead_initiator_cannot_be_selected(self):
        session = _election(12, 55, 30)
        session.toggle_node(30)

        assert session.select_initiator(30) is False
        assert session.select_initiator(77) is False
        assert session.initiator_id is None

    def test_election_needs_initiator(self):
        session = _election(12, 55, 30)
        assert session.start_election() is None
        assert session.trace.last.endswith("Select an initiator node first.")

    def test_election_needs_nodes(self):
        session = ElectionSession()
        session.initiator_id = 10
        assert session.start_election() is None
        assert session.trace.last.endswith("Generate the nodes first.")

    def test_playback_needs_election(self):
        session = _election(12, 55, 30)
        assert session.play() is False
        assert session.step() is None
        assert session.trace.last.endswith("Start an election first.")

    def test_initiator_failed_after_selection(self):
        session = _election(12, 55, 30)
        session.select_initiator(12)
        session.toggle_node(12)

        sequence = session.start_election()

        assert len(sequence) == 1
        session.run_to_completion()
        assert session.leader_id is None

    def test_switching_algorithm_discards_sequence(self):
        session = _election(12, 55, 30)
        session.select_initiator(12)
        session.start_election()
        session.step()

        session.set_algorithm(ElectionAlgorithm.RING)

        assert session.status is PlaybackStatus.IDLE
        assert session.state.cursor == 0

    def test_regenerating_discards_sequence(self):
        session = ElectionSession(ElectionConfig(seed=9))
        session.generate_nodes()
        session.select_initiator(session.nodes[0].node_id)
        session.start_election()
        session.step()

        session.generate_nodes()

        assert session.status is PlaybackStatus.IDLE
        assert session.initiator_id is None

    def test_realtime_playback(self):
        session = _election(12, 55, 30, 81)
        session.controller.base_delay_ms = 0
        session.select_initiator(12)
        session.start_election()

        async def scenario():
            assert session.play()
            await session.controller.wait()

        asyncio.run(scenario())

        assert session.leader_id == 81

    def test_speed_rejection_is_traced(self):
        session = _election(12, 55, 30)
        assert session.set_speed(0.25) is False
        assert "Speed must be one of" in session.trace.last
        assert session.set_speed(2.0)

    def test_set_nodes_rejects_bad_count_and_range(self):
        session = _election(12, 55, 30)

        assert session.set_nodes([5, 200]) is False

        assert [n.node_id for n in session.nodes] == [12, 55, 30]
        assert "between 3 and 15" in session.trace.lines[-2]
        assert "between 10 and 99" in session.trace.last

    def test_set_nodes_rejects_duplicates(self):
        session = _election(12, 55, 30)

        assert session.set_nodes([30, 30, 41]) is False

        assert [n.node_id for n in session.nodes] == [12, 55, 30]
        assert session.trace.last.endswith("Duplicate node id 30.")

    def test_clear_log(self):
        session = _election(12, 55, 30)
        session.clear_log()
        assert len(session.trace) == 0


# ===========================================================================
# Clock sync configuration
# ===========================================================================


class TestClockSyncConfig:
    def test_valid_config(self):
        assert ClockSyncConfig(num_nodes=12, max_latency=1000).validate() == []

    def test_out_of_range_values_reset(self):
        config = ClockSyncConfig(num_nodes=1, max_latency=5)
        problems = config.validate()
        assert len(problems) == 2
        assert config.num_nodes == DEFAULT_CLOCK_NODES
        assert config.max_latency == DEFAULT_LATENCY_BOUND_MS


# ===========================================================================
# Clock sync sessions
# ===========================================================================


class TestClockSyncSession:
    def test_generate_clocks(self):
        session = _clock_session(num_nodes=5)

        assert len(session.nodes) == 6
        assert session.nodes[0].role is NodeRole.SERVER
        assert session.nodes[0].logical_time == NOW
        assert session.trace.lines[1] == "[t=1] Node 0 acts as server."

    def test_berkeley_reference_is_coordinator(self):
        session = _clock_session(ClockAlgorithm.BERKELEY)
        assert session.nodes[0].role is NodeRole.COORDINATOR

    def test_rejected_latency(self):
        session = ClockSyncSession(ClockSyncConfig(seed=1), now_ms=NOW)
        session.config.max_latency = 2000

        assert session.generate_clocks() is False

        assert session.nodes == []
        assert session.config.max_latency == DEFAULT_LATENCY_BOUND_MS
        assert "between 10 and 1000 ms" in session.trace.last

    def test_synchronize_needs_clocks(self):
        session = ClockSyncSession(now_ms=NOW)
        assert session.synchronize() is None
        assert session.trace.last.endswith("Generate the clocks first.")

    def test_cristian_brings_clocks_close_to_true_time(self):
        session = _clock_session(num_nodes=8, max_latency=100)
        session.synchronize()
        session.run_to_completion()

        for node in session.nodes:
            assert node.last_rtt is not None
            assert node.applied_offset == session.state.offsets[node.node_id]
            assert node.last_rtt == session.state.rtts[node.node_id]
            assert abs(node.current_time - NOW) <= 100 / 2

    def test_berkeley_converges_to_average(self):
        session = _clock_session(ClockAlgorithm.BERKELEY, num_nodes=6)
        before = [n.current_time for n in session.nodes]
        session.synchronize()
        session.run_to_completion()

        after = {n.current_time for n in session.nodes}
        assert len(after) == 1
        assert after.pop() == int(np.floor(np.mean(before) + 0.5))

    def test_adjustment_trace_lines(self):
        session = _clock_session(ClockAlgorithm.BERKELEY, num_nodes=3)
        session.synchronize()
        session.run_to_completion()

        deltas = [line for line in session.trace if "offset 0ms →" in line]
        assert len(deltas) == 4

    def test_tick_advances_all_clocks(self):
        session = _clock_session()
        before = [n.logical_time for n in session.nodes]
        session.tick()
        assert [n.logical_time for n in session.nodes] == [t + 1000 for t in before]

    def test_failed_clock_not_synchronized(self):
        session = _clock_session(num_nodes=3)
        session.toggle_node(2)
        session.synchronize()
        session.run_to_completion()

        assert session.nodes[2].last_rtt is None
        assert session.nodes[2].applied_offset == 0
        assert session.trace.lines[3].endswith("Clock 2 marked as failed.")

    def test_switching_algorithm_keeps_offsets(self):
        session = _clock_session(num_nodes=3)
        session.synchronize()
        session.run_to_completion()
        offsets = {n.node_id: n.applied_offset for n in session.nodes}

        session.set_algorithm(ClockAlgorithm.BERKELEY)

        assert session.status is PlaybackStatus.IDLE
        assert session.nodes[0].role is NodeRole.COORDINATOR
        assert session.state.offsets == offsets

    def test_second_round_starts_from_corrected_clocks(self):
        session = _clock_session(ClockAlgorithm.BERKELEY, num_nodes=4)
        session.synchronize()
        session.run_to_completion()
        session.tick()

        sequence = session.synchronize()
        session.run_to_completion()

        # Clocks already agree, so every adjustment is zero
        final = sequence[-1].adjustments
        assert all(final[n.node_id] == 0 for n in session.nodes)


# ===========================================================================
# Command-line scenarios
# ===========================================================================


def _election_args(**overrides) -> argparse.Namespace:
    args = dict(
        nodes=5, algorithm="bully", speed=1.0, seed=4, ids=None,
        fail=[], initiator=None, realtime=False,
    )
    args.update(overrides)
    return argparse.Namespace(**args)


class TestRunElection:
    def test_explicit_ids(self):
        session = run_election(_election_args(ids=[12, 55, 30, 81], initiator=30))
        assert session.leader_id == 81

    def test_duplicate_ids_are_reported(self):
        session = run_election(_election_args(ids=[30, 30]))

        assert session.nodes == []
        assert session.leader_id is None
        assert any("Duplicate node id 30" in line for line in session.trace)

    def test_unknown_failed_node_is_reported(self):
        session = run_election(_election_args(ids=[12, 55, 30], fail=[7, 55]))

        assert "Cannot fail node 7: no such node." in session.trace.lines[2]
        assert not session.get_node(55).alive
        assert session.leader_id == 30
