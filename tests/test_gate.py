"""Tests for ortrack.gate.engine."""
from __future__ import annotations

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from ortrack.exceptions import ConfigurationError
from ortrack.gate import INFTY_COST, GatingEngine
from ortrack.track import CHI2INV95, KalmanTrack


@pytest.fixture()
def tracks():
    return [
        KalmanTrack([100.0, 100.0, 1.0, 50.0]),
        KalmanTrack([400.0, 300.0, 0.5, 80.0]),
    ]


def test_thresholds():
    assert GatingEngine().threshold == CHI2INV95[4]
    assert GatingEngine(only_position=True).threshold == CHI2INV95[2]


def test_gate_near_and_far(tracks):
    engine = GatingEngine()
    measurements = np.array([
        [101.0, 99.0, 1.0, 50.0],
        [300.0, 100.0, 1.0, 50.0],
    ])

    assert_array_equal(engine.gate(tracks[0], measurements), [True, False])
    assert engine.stats == {'total': 2, 'gated': 1, 'passed': 1}
    assert engine.get_gated_ratio() == pytest.approx(0.5)


def test_gate_cost_matrix(tracks):
    engine = GatingEngine()
    measurements = np.array([
        [101.0, 99.0, 1.0, 50.0],
        [402.0, 301.0, 0.5, 80.0],
        [900.0, 900.0, 1.0, 50.0],
    ])
    cost = np.full((2, 3), 0.3)

    gated = engine.gate_cost_matrix(cost, tracks, measurements)

    assert_array_equal(gated, [
        [0.3, INFTY_COST, INFTY_COST],
        [INFTY_COST, 0.3, INFTY_COST],
    ])
    # input is left untouched
    assert_array_equal(cost, 0.3)
    assert engine.get_stats() == {'total': 6, 'gated': 4, 'passed': 2}


def test_custom_gated_cost(tracks):
    engine = GatingEngine(gated_cost=1.0)

    gated = engine.gate_cost_matrix(np.zeros((1, 1)), tracks[:1], np.array([[900.0, 900.0, 1.0, 50.0]]))
    assert gated[0, 0] == 1.0


def test_only_position_ignores_size_change(tracks):
    resized = np.array([[101.0, 99.0, 3.0, 150.0]])

    assert not GatingEngine().gate(tracks[0], resized)[0]
    assert GatingEngine(only_position=True).gate(tracks[0], resized)[0]


def test_cost_matrix_shape_mismatch(tracks):
    with pytest.raises(ConfigurationError):
        GatingEngine().gate_cost_matrix(np.zeros((3, 1)), tracks, np.zeros((1, 4)))


def test_empty_cost_matrix():
    engine = GatingEngine()

    gated = engine.gate_cost_matrix(np.zeros((0, 0)), [], np.zeros((0, 4)))
    assert gated.shape == (0, 0)
    assert engine.get_gated_ratio() == 0.0


def test_reset_stats(tracks):
    engine = GatingEngine()
    engine.gate(tracks[0], np.array([[100.0, 100.0, 1.0, 50.0]]))

    engine.reset_stats()
    assert engine.stats == {'total': 0, 'gated': 0, 'passed': 0}
