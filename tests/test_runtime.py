"""Tests for ortrack.detect.runtime (with a fake onnxruntime session)."""
from __future__ import annotations

import logging

import numpy as np
import pytest

from ortrack.config import load_config, to_letterbox_config
from ortrack.detect.letterbox import LetterboxConfig
from ortrack.detect.runtime import OnnxDetector, parse_names, parse_stride
from ortrack.exceptions import ConfigurationError
from tests.fakes import constant_image


# ---------- Metadata parsing ----------

@pytest.mark.parametrize("raw, expected", [
    ('["person", "car"]', ["person", "car"]),
    ('{"0": "person", "1": "car"}', ["person", "car"]),
    ("{0: 'person', 1: 'car'}", ["person", "car"]),
    ("{1: 'car', 0: 'person'}", ["person", "car"]),
    ("{0: 'person', 2: 'car'}", None),
    ("not a list", None),
    ("42", None),
    ("", None),
    (None, None),
])
def test_parse_names(raw, expected):
    assert parse_names(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("[8, 16, 32]", 32),
    ("[8.0, 16.0, 32.0]", 32),
    ("64", 64),
    ("[]", None),
    ("-8", None),
    ("abc", None),
    (None, None),
])
def test_parse_stride(raw, expected):
    assert parse_stride(raw) == expected


# ---------- Construction ----------

def test_reads_categories_and_stride_from_metadata(install_session):
    session = install_session(metadata={"names": "{0: 'ball', 1: 'bat'}", "stride": "[8, 16, 64]"})

    detector = OnnxDetector("model.onnx")

    assert detector.categories == ["ball", "bat"]
    assert detector.stride == 64
    assert session.model_path == "model.onnx"
    assert session.providers == ["CPUExecutionProvider"]


def test_arguments_override_metadata(install_session):
    install_session()

    detector = OnnxDetector("model.onnx", categories=["a", "b", "c"], stride=16)

    assert detector.categories == ["a", "b", "c"]
    assert detector.stride == 16


def test_missing_stride_defaults_with_warning(install_session, caplog):
    install_session(metadata={"names": '["person"]'})

    with caplog.at_level(logging.WARNING, logger="ortrack.detect.runtime"):
        detector = OnnxDetector("model.onnx")

    assert detector.stride == 32
    assert "Stride not found" in caplog.text


def test_missing_categories_raise(install_session):
    install_session(metadata={"stride": "32"})

    with pytest.raises(ConfigurationError):
        OnnxDetector("model.onnx")


def test_static_input_shape_wins(install_session):
    install_session(input_shape=(1, 3, 320, 320))

    detector = OnnxDetector("model.onnx", target_shape=(640, 640))

    assert detector.target_shape == (320, 320)
    assert detector.letterbox_config.target_shape == (320, 320)


def test_dynamic_input_shape_uses_configured_target(install_session):
    install_session(input_shape=("batch", 3, "height", "width"))

    assert OnnxDetector("model.onnx", target_shape=(480, 640)).target_shape == (480, 640)
    assert OnnxDetector("model.onnx").target_shape == (640, 640)


# ---------- Inference ----------

def test_infer_decodes_with_per_image_geometry(install_session):
    # both images: 320x640 into 320x320 → ratio 0.5, pad (80, 0)
    rows = np.array([
        [0, 100, 180, 200, 280, 1, 0.9],
        [1, 0, 80, 50, 130, 0, 0.8],
        [1, 0, 80, 50, 130, 0, 0.1],
    ])
    session = install_session(outputs=rows)
    detector = OnnxDetector("model.onnx")

    dets = detector.infer([constant_image(320, 640, 10.0), constant_image(320, 640, 20.0)])

    assert len(dets) == 2
    assert dets[0].batch_id == 0 and dets[0].class_name == "car"
    assert dets[0].box_xyxy == (200, 200, 400, 400)
    assert dets[1].batch_id == 1 and dets[1].box_xyxy == (0, 0, 100, 100)

    (feed,) = session.calls
    tensor = feed["images"]
    assert tensor.shape == (2, 3, 320, 320)
    assert tensor.dtype == np.float32
    assert tensor[1, 0, 160, 160] == pytest.approx(20.0 / 255.0)


def test_run_checks_batch_against_geometries(install_session):
    install_session()
    detector = OnnxDetector("model.onnx")

    feed = detector.new_feed()
    feed.add_image(constant_image(100, 100, 0.0))
    tensor, geometries = feed.finalize()

    with pytest.raises(ConfigurationError):
        detector.run(tensor, geometries + geometries)
    assert detector.run(tensor, geometries) == []


def test_float16_models_receive_half_input(install_session):
    session = install_session(input_type="tensor(float16)")
    detector = OnnxDetector("model.onnx")

    detector.infer([constant_image(50, 50, 0.0)])

    assert session.calls[0]["images"].dtype == np.float16


def test_warmup(install_session):
    session = install_session(input_shape=(1, 3, 64, 64))
    detector = OnnxDetector("model.onnx")

    elapsed = detector.warmup(cycles=3, batch_size=2)

    assert elapsed >= 0.0
    assert len(session.calls) == 3
    assert session.calls[0]["images"].shape == (2, 3, 64, 64)


# ---------- Letterbox options ----------

def test_letterbox_config_options_reach_the_feed(install_session):
    install_session()
    config = LetterboxConfig(target_shape=(640, 640), scale_fill=True, pad_color=(0.0, 0.0, 0.0))

    detector = OnnxDetector("model.onnx", letterbox_config=config)

    # static 320x320 input still wins over the configured target
    assert detector.letterbox_config.target_shape == (320, 320)
    assert detector.letterbox_config.scale_fill is True
    assert detector.letterbox_config.pad_color == (0.0, 0.0, 0.0)

    _, params = detector.new_feed().add_image(constant_image(160, 640, 0.0))
    assert params.ratio == pytest.approx((2.0, 0.5))
    assert params.pad == (0.0, 0.0)


def test_scale_fill_decodes_with_non_uniform_ratio(install_session):
    rows = np.array([[0, 100, 100, 200, 200, 0, 0.9]])
    install_session(outputs=rows)
    cfg = load_config(overrides=["preprocess.scale_fill=true"])

    detector = OnnxDetector("model.onnx", letterbox_config=to_letterbox_config(cfg.preprocess))
    (det,) = detector.infer([constant_image(160, 640, 0.0)])

    assert det.box_xyxy == (200, 50, 400, 100)


def test_stride_falls_back_to_letterbox_config(install_session, caplog):
    install_session(metadata={"names": '["person"]'})

    with caplog.at_level(logging.WARNING, logger="ortrack.detect.runtime"):
        detector = OnnxDetector("model.onnx", letterbox_config=LetterboxConfig(stride=64))

    assert detector.stride == 64
    assert detector.letterbox_config.stride == 64
    assert "Stride not found" not in caplog.text
