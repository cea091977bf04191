"""
Shared data structures for the detection pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class LetterboxParams:
    """Letterbox 역변환에 필요한 이미지별 기하 파라미터

    Index 0 is always the height axis, index 1 the width axis.
    """
    ratio: Tuple[float, float]  # (r_h, r_w)
    pad: Tuple[float, float]  # (dh, dw) 한쪽 패딩 (반으로 나눈 값)
    image_shape: Tuple[int, int]  # 원본 이미지 (H, W)

    @property
    def height(self) -> int:
        return self.image_shape[0]

    @property
    def width(self) -> int:
        return self.image_shape[1]


@dataclass(frozen=True)
class Detection:
    """Decoded detection in original image coordinates."""
    batch_id: int
    box_xyxy: Tuple[int, int, int, int]  # (x0, y0, x1, y1)
    box_xywh: Tuple[int, int, int, int]  # (x0, y0, w, h)
    class_id: int
    class_name: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["box_xyxy"] = list(self.box_xyxy)
        data["box_xywh"] = list(self.box_xywh)
        return data
