"""Tests for ortrack.detect.decoder."""
from __future__ import annotations

import numpy as np
import pytest

from ortrack.detect.decoder import (
    DetectionDecoder,
    decode,
    group_by_batch,
    xyxy_to_xywh,
    xyxy_to_xywhn,
)
from ortrack.exceptions import ConfigurationError, DecodeIndexError
from ortrack.types import LetterboxParams

IDENTITY = LetterboxParams(ratio=(1.0, 1.0), pad=(0.0, 0.0), image_shape=(100, 100))


def test_decode_scenario(categories, scenario_geometry):
    rows = np.array([[0, 100, 100, 200, 200, 2, 0.9]])

    (det,) = decode(rows, categories, [scenario_geometry])

    assert det.batch_id == 0
    assert det.box_xyxy == (160, 180, 360, 380)
    assert det.box_xywh == (160, 180, 200, 200)
    assert det.class_id == 2
    assert det.class_name == "car"
    assert det.score == pytest.approx(0.9)


def test_flat_rows_match_2d_rows(categories, scenario_geometry):
    rows = np.array([[0, 100, 100, 200, 200, 2, 0.9], [0, 40, 30, 90, 70, 0, 0.5]])

    assert decode(rows.ravel(), categories, [scenario_geometry]) == decode(rows, categories, [scenario_geometry])


@pytest.mark.parametrize("rows", [np.zeros(8), np.zeros((2, 6)), np.zeros((1, 1, 7))])
def test_malformed_rows_raise(rows, categories):
    with pytest.raises(ConfigurationError):
        decode(rows, categories, [IDENTITY])


def test_empty_rows(categories):
    assert decode(np.zeros((0, 7)), categories, [IDENTITY]) == []
    assert decode([], categories, [IDENTITY]) == []


def test_threshold_is_strict_less_than(categories):
    rows = [[0, 0, 0, 10, 10, 0, 0.5], [0, 0, 0, 10, 10, 1, 0.49]]

    dets = decode(rows, categories, [IDENTITY], confidence_threshold=0.5)
    assert [d.class_id for d in dets] == [0]


def test_higher_threshold_yields_subset(rng, categories):
    n = 50
    rows = np.column_stack([
        np.zeros(n),
        rng.uniform(0, 40, (n, 2)),
        rng.uniform(50, 90, (n, 2)),
        rng.integers(0, len(categories), n),
        rng.uniform(0, 1, n),
    ])

    for t1, t2 in [(0.0, 0.3), (0.3, 0.7), (0.1, 0.95)]:
        low = set(decode(rows, categories, [IDENTITY], t1))
        high = set(decode(rows, categories, [IDENTITY], t2))
        assert high <= low


def test_output_preserves_row_order(categories):
    rows = [[0, i, i, i + 5, i + 5, i % 4, 0.5] for i in range(10)]

    dets = decode(rows, categories, [IDENTITY])
    assert [d.box_xyxy[0] for d in dets] == list(range(10))


def test_decode_is_deterministic(rng, categories, scenario_geometry):
    rows = np.column_stack([
        np.zeros(20),
        rng.uniform(0, 300, (20, 4)),
        rng.integers(0, len(categories), 20),
        rng.uniform(0, 1, 20),
    ])

    assert decode(rows, categories, [scenario_geometry]) == decode(rows, categories, [scenario_geometry])


def test_axis_specific_padding_and_ratio(categories):
    geometry = LetterboxParams(ratio=(0.25, 0.5), pad=(40.0, 10.0), image_shape=(800, 400))

    (det,) = decode([[0, 10, 40, 60, 90, 0, 1.0]], categories, [geometry])

    # x: (v - 10) / 0.5, y: (v - 40) / 0.25
    assert det.box_xyxy == (0, 0, 100, 200)


def test_coordinates_in_padding_band_clamp_to_zero(categories, scenario_geometry):
    (det,) = decode([[0, 5, 2, 120, 110, 0, 1.0]], categories, [scenario_geometry])

    assert det.box_xyxy[:2] == (0, 0)
    assert det.box_xyxy[2:] == (200, 200)


def test_rounding_ties_away_from_zero(categories):
    (det,) = decode([[0, 2.5, 3.5, 10.5, 11.49, 0, 1.0]], categories, [IDENTITY])

    assert det.box_xyxy == (3, 4, 11, 11)


@pytest.mark.parametrize("batch_id", [1, -1, 0.5, float("nan"), float("inf"), -float("inf")])
def test_batch_id_out_of_range(batch_id, categories):
    with pytest.raises(DecodeIndexError):
        decode([[batch_id, 0, 0, 1, 1, 0, 1.0]], categories, [IDENTITY])


@pytest.mark.parametrize("class_id", [4, -1, float("nan"), float("inf")])
def test_class_id_out_of_range(class_id, categories):
    with pytest.raises(DecodeIndexError):
        decode([[0, 0, 0, 1, 1, class_id, 1.0]], categories, [IDENTITY])


def test_filtered_rows_are_not_looked_up(categories):
    rows = [[5, 0, 0, 1, 1, 99, 0.1], [0, 0, 0, 1, 1, 0, 0.9]]

    dets = decode(rows, categories, [IDENTITY], confidence_threshold=0.5)
    assert len(dets) == 1


def test_rows_use_their_own_geometry(categories):
    geometries = [
        LetterboxParams(ratio=(1.0, 1.0), pad=(0.0, 0.0), image_shape=(100, 100)),
        LetterboxParams(ratio=(0.5, 0.5), pad=(0.0, 0.0), image_shape=(200, 200)),
    ]
    rows = [[1, 10, 10, 20, 20, 0, 1.0], [0, 10, 10, 20, 20, 0, 1.0]]

    dets = decode(rows, categories, geometries)
    assert dets[0].box_xyxy == (20, 20, 40, 40)
    assert dets[1].box_xyxy == (10, 10, 20, 20)


# ---------- Box conversions ----------

def test_xyxy_to_xywh():
    assert xyxy_to_xywh((160, 180, 360, 380)) == (160, 180, 200, 200)


def test_xyxy_to_xywhn():
    assert xyxy_to_xywhn((0, 0, 100, 50), (100, 200)) == pytest.approx((0.25, 0.25, 0.5, 0.5))

    with pytest.raises(ConfigurationError):
        xyxy_to_xywhn((0, 0, 1, 1), (0, 10))


def test_to_dict(categories, scenario_geometry):
    (det,) = decode([[0, 100, 100, 200, 200, 2, 0.9]], categories, [scenario_geometry])

    data = det.to_dict()
    assert data["box_xyxy"] == [160, 180, 360, 380]
    assert data["box_xywh"] == [160, 180, 200, 200]
    assert data["class_name"] == "car"


# ---------- Grouping / decoder object ----------

def test_group_by_batch(categories):
    geometries = [IDENTITY, IDENTITY, IDENTITY]
    rows = [[2, 0, 0, 1, 1, 0, 1.0], [0, 0, 0, 1, 1, 1, 1.0], [2, 0, 0, 1, 1, 2, 1.0]]

    grouped = group_by_batch(decode(rows, categories, geometries), 3)

    assert [len(g) for g in grouped] == [1, 0, 2]
    assert [d.class_id for d in grouped[2]] == [0, 2]

    with pytest.raises(DecodeIndexError):
        group_by_batch(decode(rows, categories, geometries), 2)


def test_detection_decoder(categories):
    decoder = DetectionDecoder(categories, confidence_threshold=0.5)
    rows = [[0, 0, 0, 1, 1, 0, 0.4], [1, 0, 0, 1, 1, 1, 0.6]]

    assert len(decoder(rows, [IDENTITY, IDENTITY])) == 1
    assert len(decoder(rows, [IDENTITY, IDENTITY], confidence_threshold=0.0)) == 2
    assert [len(g) for g in decoder.decode_batch(rows, [IDENTITY, IDENTITY])] == [0, 1]


def test_detection_decoder_requires_categories():
    with pytest.raises(ConfigurationError):
        DetectionDecoder([])
