"""
Detection Decoder

End-to-end ONNX 출력 (NMS 포함) 행을 원본 이미지 좌표의 Detection으로 변환.

Raw row layout (7 floats):
    (batch_id, x0, y0, x1, y1, class_id, score)

변환 순서:
    1. score < threshold 행 제거 (threshold와 같은 값은 유지)
    2. batch_id로 LetterboxParams 조회
    3. 패딩 제거 (x는 dw, y는 dh) → ratio로 나눔 (x는 r_w, y는 r_h)
    4. 0 미만 좌표는 0으로 clamp (패딩 영역에 걸친 박스)
    5. 반올림 (ties away from zero)
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ortrack.exceptions import ConfigurationError, DecodeIndexError
from ortrack.types import Detection, LetterboxParams

log = logging.getLogger(__name__)

ROW_SIZE = 7


def _as_rows(raw_rows) -> np.ndarray:
    rows = np.asarray(raw_rows, dtype=np.float64)

    if rows.ndim == 1:
        if rows.size % ROW_SIZE != 0:
            raise ConfigurationError(
                f"Flat detection output length {rows.size} is not a multiple of {ROW_SIZE}"
            )
        return rows.reshape(-1, ROW_SIZE)

    if rows.ndim == 2 and rows.shape[1] == ROW_SIZE:
        return rows

    raise ConfigurationError(f"Detection rows must be flat or (N, {ROW_SIZE}), got shape {rows.shape}")


def _round_half_away(values: np.ndarray) -> np.ndarray:
    return np.sign(values) * np.floor(np.abs(values) + 0.5)


def _index(value: float, size: int, name: str) -> int:
    if not np.isfinite(value):
        raise DecodeIndexError(f"{name} {value!r} is not a finite index")
    idx = int(value)
    if idx != value or idx < 0 or idx >= size:
        raise DecodeIndexError(f"{name} {value!r} out of range [0, {size})")
    return idx


def xyxy_to_xywh(box: Sequence[int]) -> Tuple[int, int, int, int]:
    """(x0, y0, x1, y1) → (x0, y0, w, h)"""
    x0, y0, x1, y1 = box
    return (x0, y0, x1 - x0, y1 - y0)


def xyxy_to_xywhn(box: Sequence[float], image_shape: Tuple[int, int]) -> Tuple[float, float, float, float]:
    """(x0, y0, x1, y1) → 정규화된 중심 형식 (cx/W, cy/H, w/W, h/H)

    Args:
        box: 원본 이미지 좌표의 xyxy 박스
        image_shape: 원본 이미지 (H, W)
    """
    h, w = image_shape
    if h <= 0 or w <= 0:
        raise ConfigurationError(f"Image shape must be positive, got {image_shape!r}")

    x0, y0, x1, y1 = (float(v) for v in box)
    return (
        (x0 + x1) / 2.0 / w,
        (y0 + y1) / 2.0 / h,
        (x1 - x0) / w,
        (y1 - y0) / h,
    )


def decode(
    raw_rows,
    categories: Sequence[str],
    geometry_list: Sequence[LetterboxParams],
    confidence_threshold: float = 0.0,
) -> List[Detection]:
    """
    Raw detection rows → Detection 리스트

    Args:
        raw_rows: flat 배열 (길이 7의 배수) 또는 (N, 7) 배열
        categories: class_id로 인덱싱되는 클래스 이름
        geometry_list: batch_id로 인덱싱되는 LetterboxParams
        confidence_threshold: 이 값보다 작은 score는 버림

    Returns:
        남은 행 순서 그대로의 Detection 리스트

    Raises:
        ConfigurationError: 행 형식이 잘못된 경우
        DecodeIndexError: batch_id 또는 class_id가 범위를 벗어난 경우
    """
    rows = _as_rows(raw_rows)
    rows = rows[rows[:, 6] >= confidence_threshold]

    detections = []
    for batch_value, x0, y0, x1, y1, class_value, score in rows:
        batch_id = _index(batch_value, len(geometry_list), "batch_id")
        class_id = _index(class_value, len(categories), "class_id")
        geometry = geometry_list[batch_id]

        (r_h, r_w), (dh, dw) = geometry.ratio, geometry.pad
        xs = (np.array([x0, x1]) - dw) / r_w
        ys = (np.array([y0, y1]) - dh) / r_h

        coords = np.maximum(np.array([xs[0], ys[0], xs[1], ys[1]]), 0.0)
        box_xyxy = tuple(int(v) for v in _round_half_away(coords))

        detections.append(Detection(
            batch_id=batch_id,
            box_xyxy=box_xyxy,
            box_xywh=xyxy_to_xywh(box_xyxy),
            class_id=class_id,
            class_name=categories[class_id],
            score=float(score),
        ))

    log.debug(f"Decoded {len(detections)} detections (threshold={confidence_threshold})")
    return detections


def group_by_batch(detections: Sequence[Detection], batch_size: int) -> List[List[Detection]]:
    """Detection을 batch_id별 리스트로 분리 (이미지 순서 유지)"""
    grouped: List[List[Detection]] = [[] for _ in range(batch_size)]
    for det in detections:
        if det.batch_id >= batch_size:
            raise DecodeIndexError(f"batch_id {det.batch_id} out of range [0, {batch_size})")
        grouped[det.batch_id].append(det)
    return grouped


class DetectionDecoder:
    """카테고리와 threshold를 고정한 재사용 가능한 디코더

    Args:
        categories: 클래스 이름 리스트
        confidence_threshold: 기본 confidence threshold
    """

    def __init__(self, categories: Sequence[str], confidence_threshold: float = 0.0):
        if not categories:
            raise ConfigurationError("categories must not be empty")
        self.categories = list(categories)
        self.confidence_threshold = float(confidence_threshold)

    def __call__(
        self,
        raw_rows,
        geometry_list: Sequence[LetterboxParams],
        confidence_threshold: Optional[float] = None,
    ) -> List[Detection]:
        threshold = self.confidence_threshold if confidence_threshold is None else confidence_threshold
        return decode(raw_rows, self.categories, geometry_list, threshold)

    def decode_batch(
        self,
        raw_rows,
        geometry_list: Sequence[LetterboxParams],
    ) -> List[List[Detection]]:
        """이미지별로 묶인 Detection 반환"""
        return group_by_batch(self(raw_rows, geometry_list), len(geometry_list))
