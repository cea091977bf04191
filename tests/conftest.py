"""Shared test fixtures for ORT-Track tests.

Provides synthetic CHW images, a reusable category list and a fake
onnxruntime session installer so tests run without model files.
"""
from __future__ import annotations

import numpy as np
import pytest

from ortrack.detect import runtime
from ortrack.types import LetterboxParams
from tests.fakes import FakeSession


# ---------- Image fixtures ----------

@pytest.fixture()
def rng():
    return np.random.default_rng(1234)


@pytest.fixture()
def wide_image():
    """720x1280 CHW frame (HD video)."""
    return np.zeros((3, 720, 1280), dtype=np.uint8)


# ---------- Decode fixtures ----------

@pytest.fixture()
def categories():
    return ["person", "bicycle", "car", "motorcycle"]


@pytest.fixture()
def scenario_geometry():
    return LetterboxParams(ratio=(0.5, 0.5), pad=(10.0, 20.0), image_shape=(400, 600))


# ---------- Runtime fixtures ----------

@pytest.fixture()
def install_session(monkeypatch):
    """Replace onnxruntime.InferenceSession with a FakeSession."""

    def _install(**kwargs) -> FakeSession:
        session = FakeSession(**kwargs)

        def _factory(path, providers=None, **_):
            session.model_path = path
            session.providers = providers
            return session

        monkeypatch.setattr(runtime.ort, "InferenceSession", _factory)
        return session

    return _install
