"""
Letterbox Geometry Transform

임의 크기 이미지를 고정된 네트워크 입력 크기로 맞추는 모듈.
종횡비를 유지한 채 리사이즈하고 남는 영역을 패딩으로 채우며,
Decoder가 역변환에 사용할 (ratio, pad)를 정확히 기록합니다.

Conventions:
- 이미지 버퍼는 항상 CHW (3, H, W)
- ratio, pad 모두 (height 축, width 축) 순서
- pad는 한쪽 패딩 (전체 패딩 / 2), 반올림 전의 float 값
"""

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

import cv2
import numpy as np

from ortrack.exceptions import ConfigurationError
from ortrack.types import LetterboxParams

log = logging.getLogger(__name__)

DEFAULT_PAD_COLOR = (114.0, 114.0, 114.0)  # mid-gray


def _validate_target(target_shape: Sequence[int], stride: int) -> Tuple[Tuple[int, int], int]:
    if target_shape is None or len(target_shape) != 2:
        raise ConfigurationError(f"target_shape must be (height, width), got {target_shape!r}")

    th, tw = target_shape
    for v in (th, tw):
        if isinstance(v, bool) or not isinstance(v, (int, np.integer)) or v <= 0:
            raise ConfigurationError(f"target_shape must hold positive integers, got {target_shape!r}")

    if isinstance(stride, bool) or not isinstance(stride, (int, np.integer)) or stride <= 0:
        raise ConfigurationError(f"stride must be a positive integer, got {stride!r}")

    return (int(th), int(tw)), int(stride)


def _validate_image(image: np.ndarray) -> None:
    if not isinstance(image, np.ndarray) or image.ndim != 3 or image.shape[0] != 3:
        shape = getattr(image, "shape", None)
        raise ConfigurationError(f"Expected a CHW image with 3 channels, got shape {shape}")
    if image.shape[1] == 0 or image.shape[2] == 0:
        raise ConfigurationError(f"Empty image: shape {image.shape}")


@dataclass(frozen=True)
class LetterboxConfig:
    """Letterbox 설정 (Geometry Transform의 configuration surface)"""
    target_shape: Tuple[int, int] = (640, 640)  # (H, W)
    stride: int = 32
    auto_pad: bool = False  # 패딩을 stride의 나머지로 축소
    scale_fill: bool = False  # 패딩 없이 늘려서 채움 (비균일 ratio)
    allow_upscale: bool = True
    pad_color: Tuple[float, float, float] = DEFAULT_PAD_COLOR

    def __post_init__(self):
        # OmegaConf ListConfig 등 시퀀스를 tuple로 정규화
        try:
            target_shape = tuple(self.target_shape)
        except TypeError as e:
            raise ConfigurationError(f"target_shape must be (height, width), got {self.target_shape!r}") from e
        target, stride = _validate_target(target_shape, self.stride)
        object.__setattr__(self, "target_shape", target)
        object.__setattr__(self, "stride", stride)

        if len(self.pad_color) != 3:
            raise ConfigurationError(f"pad_color needs 3 values, got {self.pad_color!r}")
        object.__setattr__(self, "pad_color", tuple(float(c) for c in self.pad_color))


def compute_letterbox_params(
    image_shape: Tuple[int, int],
    target_shape: Tuple[int, int],
    stride: int = 32,
    auto_pad: bool = False,
    scale_fill: bool = False,
    allow_upscale: bool = True,
) -> Tuple[LetterboxParams, Tuple[int, int], Tuple[int, int, int, int]]:
    """픽셀 연산 없이 Letterbox 기하만 계산

    Args:
        image_shape: 원본 (H, W)
        target_shape: 네트워크 입력 (H, W)
        stride: 모델 stride (auto_pad에서 사용)
        auto_pad: 패딩을 ``padding % stride``로 축소
        scale_fill: 패딩 없이 target 크기로 늘림
        allow_upscale: False면 ratio <= 1.0으로 제한

    Returns:
        (params, unpadded (H, W), borders (top, bottom, left, right))
    """
    (th, tw), stride = _validate_target(target_shape, stride)
    h, w = int(image_shape[0]), int(image_shape[1])
    if h <= 0 or w <= 0:
        raise ConfigurationError(f"Image shape must be positive, got {image_shape!r}")

    r = min(th / h, tw / w)
    if not allow_upscale:
        r = min(r, 1.0)

    ratio = (r, r)
    new_unpad = (int(round(h * r)), int(round(w * r)))
    dh, dw = float(th - new_unpad[0]), float(tw - new_unpad[1])

    if auto_pad:
        dh, dw = dh % stride, dw % stride
    elif scale_fill:
        dh, dw = 0.0, 0.0
        new_unpad = (th, tw)
        ratio = (th / h, tw / w)

    dh /= 2
    dw /= 2

    # -0.1 / +0.1 bias: 홀수 패딩이 항상 bottom/right로 가도록
    top, bottom = int(round(dh - 0.1)), int(round(dh + 0.1))
    left, right = int(round(dw - 0.1)), int(round(dw + 0.1))

    params = LetterboxParams(ratio=ratio, pad=(dh, dw), image_shape=(h, w))
    return params, new_unpad, (top, bottom, left, right)


def resize_bilinear(image: np.ndarray, shape: Tuple[int, int]) -> np.ndarray:
    """Bilinear 리사이즈 (CHW)

    소스 좌표 = 출력 좌표 * (src / dst). 이웃 픽셀 인덱스는
    마지막 행/열로 clamp 되므로 경계 밖을 읽지 않습니다.

    Args:
        image: (3, H, W) 배열
        shape: 출력 (H, W)

    Returns:
        (3, shape[0], shape[1]) float32 배열
    """
    _validate_image(image)
    nh, nw = int(shape[0]), int(shape[1])
    if nh <= 0 or nw <= 0:
        raise ConfigurationError(f"Resize shape must be positive, got {shape!r}")

    _, h, w = image.shape
    src = image.astype(np.float32, copy=False)

    ys = np.arange(nh, dtype=np.float64) * (h / nh)
    xs = np.arange(nw, dtype=np.float64) * (w / nw)

    y0 = np.minimum(np.floor(ys).astype(np.intp), h - 1)
    x0 = np.minimum(np.floor(xs).astype(np.intp), w - 1)
    y1 = np.minimum(np.ceil(ys).astype(np.intp), h - 1)
    x1 = np.minimum(np.ceil(xs).astype(np.intp), w - 1)

    fy = (ys - np.floor(ys)).astype(np.float32)[:, None]
    fx = (xs - np.floor(xs)).astype(np.float32)[None, :]

    upper = src[:, y0, :]
    lower = src[:, y1, :]
    top = upper[:, :, x0] * (1.0 - fx) + upper[:, :, x1] * fx
    bottom = lower[:, :, x0] * (1.0 - fx) + lower[:, :, x1] * fx

    return (top * (1.0 - fy) + bottom * fy).astype(np.float32, copy=False)


def apply_letterbox(image: np.ndarray, config: LetterboxConfig) -> Tuple[np.ndarray, LetterboxParams]:
    """Letterbox 수행 후 (이미지, 기하 파라미터) 반환"""
    _validate_image(image)
    params, new_unpad, (top, bottom, left, right) = compute_letterbox_params(
        image.shape[1:],
        config.target_shape,
        stride=config.stride,
        auto_pad=config.auto_pad,
        scale_fill=config.scale_fill,
        allow_upscale=config.allow_upscale,
    )

    if tuple(image.shape[1:]) != new_unpad:
        resized = resize_bilinear(image, new_unpad)
    else:
        resized = image.astype(np.float32, copy=True)

    out_h = new_unpad[0] + top + bottom
    out_w = new_unpad[1] + left + right

    canvas = np.empty((3, out_h, out_w), dtype=np.float32)
    canvas[:] = np.asarray(config.pad_color, dtype=np.float32).reshape(3, 1, 1)
    canvas[:, top:top + new_unpad[0], left:left + new_unpad[1]] = resized

    log.debug(
        f"Letterbox {tuple(image.shape[1:])} -> {(out_h, out_w)}, "
        f"ratio={params.ratio}, pad={params.pad}"
    )
    return canvas, params


def letterbox(
    image: np.ndarray,
    target_shape: Tuple[int, int],
    stride: int = 32,
    auto_pad: bool = False,
    scale_fill: bool = False,
    allow_upscale: bool = True,
    pad_color: Tuple[float, float, float] = DEFAULT_PAD_COLOR,
) -> Tuple[np.ndarray, Tuple[float, float], Tuple[float, float]]:
    """
    Letterbox 리사이즈

    Args:
        image: (3, H, W) 이미지 (0~255)
        target_shape: (H, W) 네트워크 입력 크기
        stride: 모델 stride
        auto_pad: 최소 패딩 (stride 배수 유지)
        scale_fill: 패딩 없이 늘려서 채움
        allow_upscale: 작은 이미지 확대 허용 여부
        pad_color: 패딩 색 (채널별)

    Returns:
        (resized_image, ratio (r_h, r_w), pad (dh, dw))
        ratio와 pad는 같은 이미지의 디코딩에 그대로 전달해야 합니다.
    """
    config = LetterboxConfig(
        target_shape=target_shape,
        stride=stride,
        auto_pad=auto_pad,
        scale_fill=scale_fill,
        allow_upscale=allow_upscale,
        pad_color=tuple(pad_color),
    )
    canvas, params = apply_letterbox(image, config)
    return canvas, params.ratio, params.pad


def image_to_chw(frame: np.ndarray, bgr: bool = True) -> np.ndarray:
    """OpenCV HWC 프레임 -> CHW float32 RGB 버퍼"""
    if frame.ndim != 3 or frame.shape[2] != 3:
        raise ConfigurationError(f"Expected an HWC frame with 3 channels, got shape {frame.shape}")

    if bgr:
        frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    return np.ascontiguousarray(frame.transpose(2, 0, 1), dtype=np.float32)
