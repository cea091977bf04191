"""
ORT-Track Configuration

OmegaConf structured config. configs/config.yaml과 같은 구조이며,
scripts/detect.py는 Hydra로, 라이브러리 사용자는 load_config()로 읽습니다.

Usage:
    cfg = load_config("configs/config.yaml", overrides=["preprocess.stride=64"])
    lb = to_letterbox_config(cfg.preprocess)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

from omegaconf import DictConfig, OmegaConf

from ortrack.detect.letterbox import LetterboxConfig
from ortrack.exceptions import ConfigurationError
from ortrack.track.kalman_filter import KalmanFilter

log = logging.getLogger(__name__)


@dataclass
class PreprocessConfig:
    target_shape: List[int] = field(default_factory=lambda: [640, 640])  # (H, W)
    stride: int = 32
    auto_pad: bool = False
    scale_fill: bool = False
    allow_upscale: bool = True
    pad_color: List[float] = field(default_factory=lambda: [114.0, 114.0, 114.0])
    max_workers: Optional[int] = None


@dataclass
class DecodeConfig:
    confidence_threshold: float = 0.25
    categories: Optional[List[str]] = None  # None → 모델 메타데이터


@dataclass
class TrackerConfig:
    std_weight_position: float = 1.0 / 20
    std_weight_velocity: float = 1.0 / 160
    only_position: bool = False  # gating에 위치만 사용


@dataclass
class RuntimeConfig:
    model_path: Optional[str] = None
    providers: List[str] = field(default_factory=lambda: ["CPUExecutionProvider"])
    warmup_cycles: int = 3


@dataclass
class OrtTrackConfig:
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    decode: DecodeConfig = field(default_factory=DecodeConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    images: List[str] = field(default_factory=list)
    output: Optional[str] = None


def load_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Sequence[str] = (),
) -> DictConfig:
    """
    설정 로드 (schema ← YAML ← dotlist overrides 순서로 병합)

    Args:
        path: YAML 파일 경로 (None이면 기본값만)
        overrides: ``["decode.confidence_threshold=0.5"]`` 형식

    Returns:
        OrtTrackConfig 스키마로 검증된 DictConfig
    """
    cfg = OmegaConf.structured(OrtTrackConfig)

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        file_cfg = OmegaConf.load(path)
        # Hydra 전용 키는 스키마에 없음
        if "hydra" in file_cfg:
            file_cfg.pop("hydra")
        if "defaults" in file_cfg:
            file_cfg.pop("defaults")
        cfg = OmegaConf.merge(cfg, file_cfg)
        log.debug(f"Loaded config: {path}")

    if overrides:
        cfg = OmegaConf.merge(cfg, OmegaConf.from_dotlist(list(overrides)))

    return cfg


def to_letterbox_config(preprocess: Union[PreprocessConfig, DictConfig]) -> LetterboxConfig:
    """preprocess 섹션 → LetterboxConfig (검증 포함)"""
    return LetterboxConfig(
        target_shape=tuple(preprocess.target_shape),
        stride=preprocess.stride,
        auto_pad=preprocess.auto_pad,
        scale_fill=preprocess.scale_fill,
        allow_upscale=preprocess.allow_upscale,
        pad_color=tuple(preprocess.pad_color),
    )


def to_kalman_filter(tracker: Union[TrackerConfig, DictConfig]) -> KalmanFilter:
    """tracker 섹션 → KalmanFilter"""
    return KalmanFilter(
        std_weight_position=tracker.std_weight_position,
        std_weight_velocity=tracker.std_weight_velocity,
    )
