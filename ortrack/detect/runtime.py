"""
ONNX Runtime Detector

End-to-end export된 ONNX 검출기 (NMS 포함, 출력 = (N, 7) rows)를
Letterbox → Batch Feed → Session.run → Decode 흐름으로 묶는 어댑터.

모델 커스텀 메타데이터:
    - names: 클래스 이름 (JSON list / {idx: name} dict / Python literal dict)
    - stride: 모델 stride (JSON list면 마지막 값, 또는 단일 숫자)
"""

import ast
import json
import logging
import time
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import onnxruntime as ort

from ortrack.detect.decoder import DetectionDecoder
from ortrack.detect.feed import BatchFeedBuilder
from ortrack.detect.letterbox import LetterboxConfig
from ortrack.exceptions import ConfigurationError
from ortrack.types import Detection, LetterboxParams

log = logging.getLogger(__name__)

DEFAULT_STRIDE = 32
DEFAULT_TARGET_SHAPE = (640, 640)


def parse_names(raw: Optional[str]) -> Optional[List[str]]:
    """메타데이터 ``names`` 문자열 → 클래스 이름 리스트 (파싱 불가 시 None)"""
    if not raw:
        return None

    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        try:
            value = ast.literal_eval(raw)
        except (ValueError, SyntaxError):
            return None

    if isinstance(value, dict):
        try:
            items = sorted((int(k), str(v)) for k, v in value.items())
        except (TypeError, ValueError):
            return None
        if [k for k, _ in items] != list(range(len(items))):
            return None
        return [name for _, name in items]

    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]

    return None


def parse_stride(raw: Optional[str]) -> Optional[int]:
    """메타데이터 ``stride`` 문자열 → 정수 stride (파싱 불가 시 None)"""
    if not raw:
        return None

    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        try:
            value = ast.literal_eval(raw)
        except (ValueError, SyntaxError):
            return None

    if isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[-1]

    try:
        stride = int(value)
    except (TypeError, ValueError):
        return None
    return stride if stride > 0 else None


def _static_hw(shape: Sequence) -> Optional[Tuple[int, int]]:
    if len(shape) != 4:
        return None
    h, w = shape[2], shape[3]
    if isinstance(h, int) and isinstance(w, int) and h > 0 and w > 0:
        return h, w
    return None


class OnnxDetector:
    """ONNX 검출기 + 전처리/후처리

    Args:
        model_path: .onnx 파일 경로
        categories: 클래스 이름. None이면 모델 메타데이터에서 읽음
        stride: 모델 stride. None이면 메타데이터 → letterbox_config.stride 순
        target_shape: 입력 (H, W). 모델 입력이 동적일 때만 사용 (None이면 letterbox_config의 값)
        confidence_threshold: 디코딩 threshold
        providers: onnxruntime execution providers
        letterbox_config: 전처리 옵션 (auto_pad, scale_fill, allow_upscale, pad_color).
            target_shape/stride는 위 규칙으로 다시 결정됨

    Example:
        >>> detector = OnnxDetector("weights/yolov7-tiny.onnx")
        >>> detections = detector.infer([image])
    """

    def __init__(
        self,
        model_path: str,
        categories: Optional[Sequence[str]] = None,
        stride: Optional[int] = None,
        target_shape: Optional[Tuple[int, int]] = None,
        confidence_threshold: float = 0.25,
        providers: Sequence[str] = ("CPUExecutionProvider",),
        letterbox_config: Optional[LetterboxConfig] = None,
    ):
        log.info(f"Loading ONNX model: {model_path}")
        self.session = ort.InferenceSession(str(model_path), providers=list(providers))

        model_input = self.session.get_inputs()[0]
        self.input_name = model_input.name
        self.input_type = model_input.type
        self.output_names = [o.name for o in self.session.get_outputs()]

        metadata = self._custom_metadata()

        if categories is None:
            categories = parse_names(metadata.get("names"))
            if categories is None:
                raise ConfigurationError(
                    "No categories given and model metadata has no parsable 'names'"
                )
        self.categories = list(categories)

        if stride is None:
            stride = parse_stride(metadata.get("stride"))
            if stride is None:
                if letterbox_config is not None:
                    stride = letterbox_config.stride
                else:
                    log.warning(f"Stride not found in model metadata, using default {DEFAULT_STRIDE}")
                    stride = DEFAULT_STRIDE
        self.stride = stride

        if target_shape is None and letterbox_config is not None:
            target_shape = letterbox_config.target_shape

        static_hw = _static_hw(model_input.shape)
        if static_hw is not None:
            if target_shape is not None and tuple(target_shape) != static_hw:
                log.warning(f"Model input is fixed to {static_hw}; ignoring target_shape={tuple(target_shape)}")
            self.target_shape = static_hw
        else:
            self.target_shape = tuple(target_shape) if target_shape is not None else DEFAULT_TARGET_SHAPE

        self.letterbox_config = replace(
            letterbox_config or LetterboxConfig(),
            target_shape=self.target_shape,
            stride=self.stride,
        )
        self.decoder = DetectionDecoder(self.categories, confidence_threshold)

        log.info(
            f"Detector ready: input={self.input_name} {self.target_shape}, "
            f"stride={self.stride}, classes={len(self.categories)}"
        )

    def _custom_metadata(self) -> Dict[str, str]:
        meta = self.session.get_modelmeta()
        return dict(getattr(meta, "custom_metadata_map", None) or {})

    def new_feed(self) -> BatchFeedBuilder:
        """이 모델의 입력 설정을 가진 빈 BatchFeedBuilder"""
        return BatchFeedBuilder(self.letterbox_config)

    def _forward(self, tensor: np.ndarray) -> np.ndarray:
        if self.input_type == "tensor(float16)":
            tensor = tensor.astype(np.float16)
        outputs = self.session.run(self.output_names, {self.input_name: tensor})
        return np.asarray(outputs[0], dtype=np.float32)

    def run(self, tensor: np.ndarray, geometries: Sequence[LetterboxParams]) -> List[Detection]:
        """
        배치 텐서 추론 + 디코딩

        Args:
            tensor: (B, 3, H, W) float32 (BatchFeedBuilder.finalize 결과)
            geometries: 같은 finalize에서 나온 LetterboxParams 리스트

        Returns:
            Detection 리스트 (batch_id = geometries 인덱스)
        """
        if tensor.ndim != 4 or tensor.shape[0] != len(geometries):
            raise ConfigurationError(
                f"Batch tensor {tensor.shape} does not match {len(geometries)} geometries"
            )
        raw = self._forward(tensor)
        return self.decoder(raw, geometries)

    def infer(self, images: Sequence[np.ndarray], max_workers: Optional[int] = None) -> List[Detection]:
        """CHW 이미지들 (0~255) → Detection 리스트"""
        feed = self.new_feed()
        feed.add_images(images, max_workers=max_workers)
        tensor, geometries = feed.finalize()
        return self.run(tensor, geometries)

    def warmup(self, cycles: int = 10, batch_size: int = 1) -> float:
        """
        빈 입력으로 반복 추론

        Returns:
            전체 경과 시간 (ms)
        """
        h, w = self.target_shape
        dummy = np.zeros((batch_size, 3, h, w), dtype=np.float32)

        start = time.perf_counter()
        for _ in range(cycles):
            self._forward(dummy)
        elapsed = (time.perf_counter() - start) * 1000
        log.info(f"Warmup: {cycles} cycles x batch {batch_size} in {elapsed:.1f} ms")
        return elapsed
