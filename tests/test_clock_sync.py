"""
Tests for the Cristian and Berkeley clock synchronization compilers.
"""

import math

import numpy as np
import pytest

from dsviz.simulation import (
    ClockAlgorithm,
    ClockNode,
    Constant,
    Distribution,
    MessageKind,
    NodeRole,
    berkeley_average,
    compile_berkeley,
    compile_clock_sync,
    compile_cristian,
    cristian_offset,
    generate_clock_nodes,
    messages_of_kind,
)

NOW = 1_000_000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class Scripted(Distribution):
    """Returns pre-set values in order."""

    def __init__(self, *values: int):
        self._values = iter(values)

    def sample(self, rng: np.random.Generator) -> int:
        return next(self._values)


def _clocks(*drifts: int, failed: tuple[int, ...] = ()) -> list[ClockNode]:
    """Reference node 0 plus one client per drift."""
    nodes = [ClockNode(node_id=0, logical_time=NOW, role=NodeRole.SERVER)]
    for node_id, drift in enumerate(drifts, start=1):
        nodes.append(
            ClockNode(
                node_id=node_id,
                logical_time=NOW + drift,
                base_offset=drift,
                alive=node_id not in failed,
            )
        )
    return nodes


def _adjustment_actions(sequence):
    return [a for a in sequence if a.adjustments is not None]


# ===========================================================================
# Cristian
# ===========================================================================


class TestCristian:
    def test_symmetric_delays_recover_drift(self):
        sequence = compile_cristian(
            _clocks(500, -1200), 200, np.random.default_rng(0), delay_dist=Constant(40)
        )

        adjustments = _adjustment_actions(sequence)
        assert [dict(a.adjustments) for a in adjustments] == [{0: 0}, {1: -500}, {2: 1200}]
        assert [dict(a.rtt_values) for a in adjustments] == [{0: 80}, {1: 80}, {2: 80}]

    def test_three_actions_per_node(self):
        sequence = compile_cristian(_clocks(10, 20, 30), 200, np.random.default_rng(0))

        # reference announcement + 3 per alive node + closing action
        assert len(sequence) == 1 + 3 * 4 + 1
        requests = messages_of_kind(sequence, MessageKind.REQUEST)
        responses = messages_of_kind(sequence, MessageKind.RESPONSE)
        assert [(m.from_id, m.to_id) for m in requests] == [(0, 0), (1, 0), (2, 0), (3, 0)]
        assert [(m.from_id, m.to_id) for m in responses] == [(0, 0), (0, 1), (0, 2), (0, 3)]

    def test_response_carries_server_time(self):
        sequence = compile_cristian(
            _clocks(300), 200, np.random.default_rng(0), delay_dist=Scripted(10, 20, 30, 40)
        )
        responses = messages_of_kind(sequence, MessageKind.RESPONSE)
        assert [m.timestamp for m in responses] == [NOW + 10, NOW + 30]

    def test_half_rtt_rounds_up(self):
        # server_time - (send + rtt/2) = 10 - 11.5 = -1.5
        sequence = compile_cristian(
            _clocks(), 200, np.random.default_rng(0), delay_dist=Scripted(10, 13)
        )
        assert dict(_adjustment_actions(sequence)[0].adjustments) == {0: -1}

    def test_theta_matches_formula_with_seeded_rng(self):
        max_latency = 150
        nodes = _clocks(700, -2500, 1)
        sequence = compile_cristian(nodes, max_latency, np.random.default_rng(99))

        replay = np.random.default_rng(99)
        true_time = NOW
        for node, action in zip(nodes, _adjustment_actions(sequence)):
            d1 = max(5, math.floor(replay.uniform(0, max_latency)))
            d2 = max(5, math.floor(replay.uniform(0, max_latency)))
            send = node.logical_time + node.applied_offset
            expected = math.floor(true_time + d1 - (send + (d1 + d2) / 2) + 0.5)
            assert action.adjustments[node.node_id] == expected
            assert action.rtt_values[node.node_id] == d1 + d2

    def test_true_time_ignores_reference_drift(self):
        nodes = _clocks(100)
        nodes[0].logical_time = NOW + 50
        nodes[0].base_offset = 50
        sequence = compile_cristian(nodes, 200, np.random.default_rng(0), delay_dist=Constant(20))
        assert dict(_adjustment_actions(sequence)[1].adjustments) == {1: -100}

    def test_failed_nodes_skipped(self):
        sequence = compile_cristian(_clocks(10, 20, failed=(1,)), 200, np.random.default_rng(0))
        adjusted = [next(iter(a.adjustments)) for a in _adjustment_actions(sequence)]
        assert adjusted == [0, 2]

    def test_no_alive_nodes(self):
        nodes = _clocks(10)
        for node in nodes:
            node.alive = False
        sequence = compile_cristian(nodes, 200, np.random.default_rng(0))
        assert len(sequence) == 1
        assert sequence[0].adjustments is None

    def test_cristian_offset(self):
        assert cristian_offset(client_send_time=1000, server_time=1100, round_trip_time=60) == 70


# ===========================================================================
# Berkeley
# ===========================================================================


class TestBerkeley:
    def test_worked_example(self):
        sequence = compile_berkeley(_clocks(300, -100, 1000), 200, np.random.default_rng(0))

        final = sequence[-1]
        assert dict(final.adjustments) == {0: 300, 1: 0, 2: 400, 3: -700}
        assert set(final.highlight_ids) == {0, 1, 2, 3}
        # coordinator, 3 polls with responses, collected, average, 4 offsets, apply
        assert len(sequence) == 1 + 6 + 1 + 1 + 4 + 1

    def test_message_flow(self):
        sequence = compile_berkeley(_clocks(300, -100), 200, np.random.default_rng(0))

        polls = messages_of_kind(sequence, MessageKind.POLL)
        responses = messages_of_kind(sequence, MessageKind.RESPONSE)
        offsets = messages_of_kind(sequence, MessageKind.OFFSET)
        assert [(m.from_id, m.to_id) for m in polls] == [(0, 1), (0, 2)]
        assert [(m.from_id, m.to_id) for m in responses] == [(1, 0), (2, 0)]
        assert [m.timestamp for m in responses] == [NOW + 300, NOW - 100]
        assert [(m.from_id, m.to_id) for m in offsets] == [(0, 0), (0, 1), (0, 2)]

    def test_average_rounds_and_adjustments_sum_near_zero(self):
        rng = np.random.default_rng(11)
        for _ in range(30):
            nodes = generate_clock_nodes(int(rng.integers(2, 13)), rng, NOW)
            for node in nodes:
                node.applied_offset = int(rng.integers(-50, 50))
            sequence = compile_berkeley(nodes, 100, rng)

            times = [n.current_time for n in nodes]
            average = math.floor(sum(times) / len(times) + 0.5)
            adjustments = sequence[-1].adjustments
            assert {n.node_id: average - n.current_time for n in nodes} == dict(adjustments)
            assert abs(sum(adjustments.values())) <= len(nodes) / 2

    def test_first_alive_node_coordinates(self):
        sequence = compile_berkeley(_clocks(10, 20, 30), 200, np.random.default_rng(0))
        assert sequence[0].highlight_ids == (0,)

        nodes = _clocks(10, 20, 30)
        nodes[0].alive = False
        sequence = compile_berkeley(nodes, 200, np.random.default_rng(0))
        assert sequence[0].highlight_ids == (1,)
        assert {m.from_id for m in messages_of_kind(sequence, MessageKind.POLL)} == {1}
        assert 0 not in sequence[-1].adjustments

    def test_no_alive_nodes(self):
        nodes = _clocks(10)
        for node in nodes:
            node.alive = False
        sequence = compile_berkeley(nodes, 200, np.random.default_rng(0))
        assert len(sequence) == 1

    def test_berkeley_average(self):
        assert berkeley_average([10, 11]) == 11
        assert berkeley_average([10, 20, 30]) == 20


# ===========================================================================
# Dispatch and determinism
# ===========================================================================


class TestCompileClockSync:
    @pytest.mark.parametrize("algorithm", list(ClockAlgorithm))
    def test_same_seed_same_sequence(self, algorithm):
        nodes = generate_clock_nodes(6, np.random.default_rng(3), NOW)

        first = compile_clock_sync(algorithm, nodes, 300, np.random.default_rng(8))
        second = compile_clock_sync(algorithm, nodes, 300, np.random.default_rng(8))

        assert first == second

    def test_compilers_do_not_mutate_nodes(self):
        nodes = _clocks(100, -200)
        before = [repr(n) for n in nodes]
        compile_cristian(nodes, 200, np.random.default_rng(0))
        compile_berkeley(nodes, 200, np.random.default_rng(0))
        assert [repr(n) for n in nodes] == before
