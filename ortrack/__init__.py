"""
ORT-Track: ONNX Detection Geometry, Decoding and Kalman Tracking Core

ONNX 검출기(YOLOv7 end-to-end export) 앞뒤에 붙는 전처리/후처리와
트래킹 상태 추정을 담당하는 라이브러리

Modules:
    - detect: Letterbox 전처리, Batch Feed 구성, Detection 디코딩, ONNX Runtime 어댑터
    - track: 8차원 Kalman 상태 추정기 (cx, cy, aspect, height + 속도)
    - gate: Mahalanobis 기반 게이팅 (chi-square 95% 임계값)
    - config: OmegaConf 기반 설정
"""

__version__ = "0.1.0"
__author__ = "YUjin"

from pathlib import Path

from ortrack.exceptions import (
    ConfigurationError,
    DecodeIndexError,
    NumericalError,
    OrtTrackError,
)
from ortrack.types import Detection, LetterboxParams

# 프로젝트 루트 경로
ROOT = Path(__file__).resolve().parent.parent

__all__ = [
    "ROOT",
    "ConfigurationError",
    "DecodeIndexError",
    "Detection",
    "LetterboxParams",
    "NumericalError",
    "OrtTrackError",
]
