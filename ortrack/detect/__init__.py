"""
ORT-Track Detect Module

ONNX 검출기 전처리/후처리 모듈
- letterbox: 종횡비 유지 리사이즈 + (ratio, pad) 기록
- feed: thread-safe 배치 텐서 구성 (batch_id = 제출 순서)
- decoder: raw rows → 원본 이미지 좌표 Detection
- runtime: onnxruntime 세션 어댑터
"""

from ortrack.detect.decoder import DetectionDecoder, decode, group_by_batch, xyxy_to_xywh, xyxy_to_xywhn
from ortrack.detect.feed import BatchFeedBuilder
from ortrack.detect.letterbox import (
    LetterboxConfig,
    apply_letterbox,
    compute_letterbox_params,
    image_to_chw,
    letterbox,
    resize_bilinear,
)

__all__ = [
    "BatchFeedBuilder",
    "DetectionDecoder",
    "LetterboxConfig",
    "apply_letterbox",
    "compute_letterbox_params",
    "decode",
    "group_by_batch",
    "image_to_chw",
    "letterbox",
    "resize_bilinear",
    "xyxy_to_xywh",
    "xyxy_to_xywhn",
]
