"""
Batch Feed Builder

여러 장의 이미지를 Letterbox + 정규화(0~1)하여 하나의 배치 텐서로 묶는 모듈.

핵심 규칙:
- 이미지 제출 순서 == batch_id (0부터)
- batch_id는 Letterbox 실행 전에 lock 안에서 예약 (reserve-then-fill)
- 병렬 Letterbox가 끝나는 순서와 무관하게 각 결과는 예약된 slot에 기록
  → 디코딩 시 다른 이미지의 (ratio, pad)를 쓰는 일이 없음
- add_image는 (batch_id, params)를 반환 → 호출자가 Detection.batch_id를 자기 이미지에 매핑
- 잘못된 이미지는 slot 예약 전에 거부 (batch_id를 소모하지 않음)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np

from ortrack.detect.letterbox import LetterboxConfig, _validate_image, apply_letterbox
from ortrack.exceptions import ConfigurationError
from ortrack.types import LetterboxParams

log = logging.getLogger(__name__)

MAX_PIXEL_VALUE = 255.0


@dataclass
class FeedSlot:
    """단일 이미지 슬롯 (batch_id 위치)"""
    tensor: Optional[np.ndarray] = None  # (3, H, W), 0~1
    params: Optional[LetterboxParams] = None

    @property
    def ready(self) -> bool:
        return self.tensor is not None


class BatchFeedBuilder:
    """Thread-safe batch builder

    Args:
        config: Letterbox 설정 (target shape, stride 등). 모든 이미지에 동일하게 적용.

    Example:
        >>> builder = BatchFeedBuilder(LetterboxConfig(target_shape=(640, 640)))
        >>> batch_id, params = builder.add_image(image)  # batch_id 0
        >>> tensor, geometries = builder.finalize()
    """

    def __init__(self, config: Optional[LetterboxConfig] = None):
        self.config = config or LetterboxConfig()
        self._lock = threading.Lock()
        self._slots: List[FeedSlot] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    @property
    def geometries(self) -> List[Optional[LetterboxParams]]:
        """현재까지 기록된 기하 파라미터 (미완료 slot은 None)"""
        with self._lock:
            return [slot.params for slot in self._slots]

    def _reserve(self, count: int = 1) -> int:
        with self._lock:
            first = len(self._slots)
            self._slots.extend(FeedSlot() for _ in range(count))
        return first

    def _prepare(self, image: np.ndarray) -> Tuple[np.ndarray, LetterboxParams]:
        lettered, params = apply_letterbox(image, self.config)
        lettered /= MAX_PIXEL_VALUE
        return lettered, params

    def _fill(self, batch_id: int, tensor: np.ndarray, params: LetterboxParams) -> None:
        with self._lock:
            slot = self._slots[batch_id]
            slot.tensor = tensor
            slot.params = params

    def _mark_failed(self, batch_id: int) -> None:
        # 예약 후 실패한 slot은 비어 있는 채로 남음. finalize 전에 reset() 필요
        log.warning(f"Letterbox failed for batch_id={batch_id}; slot left empty until reset()")

    def reset(self) -> int:
        """모든 slot 폐기 (다음 이미지는 batch_id 0부터)

        Returns:
            폐기된 slot 수
        """
        with self._lock:
            dropped = len(self._slots)
            self._slots = []
        if dropped:
            log.info(f"Feed reset: dropped {dropped} slots")
        return dropped

    def add_image(self, image: np.ndarray) -> Tuple[int, LetterboxParams]:
        """이미지 1장 추가

        Args:
            image: (3, H, W) 이미지 (0~255)

        Returns:
            (batch_id, LetterboxParams). batch_id = 제출 순서

        Raises:
            ConfigurationError: CHW 3채널이 아니거나 빈 이미지 (slot을 예약하지 않음)
        """
        _validate_image(image)

        batch_id = self._reserve()
        try:
            tensor, params = self._prepare(image)
        except Exception:
            self._mark_failed(batch_id)
            raise
        self._fill(batch_id, tensor, params)
        log.debug(f"Feed slot {batch_id} ready: ratio={params.ratio}, pad={params.pad}")
        return batch_id, params

    def add_images(
        self,
        images: Iterable[np.ndarray],
        max_workers: Optional[int] = None,
    ) -> List[Tuple[int, LetterboxParams]]:
        """여러 장을 병렬로 Letterbox

        전체 이미지를 먼저 검증하고, batch_id를 입력 순서대로 예약한 뒤 병렬 처리합니다.
        하나라도 잘못된 이미지가 있으면 아무 slot도 예약하지 않습니다.

        Args:
            images: (3, H, W) 이미지들
            max_workers: ThreadPoolExecutor worker 수 (None이면 기본값)

        Returns:
            입력 순서와 같은 순서의 (batch_id, LetterboxParams) 리스트
        """
        images = list(images)
        if not images:
            return []

        for image in images:
            _validate_image(image)

        first = self._reserve(len(images))

        def _work(offset: int) -> Tuple[int, LetterboxParams]:
            batch_id = first + offset
            try:
                tensor, params = self._prepare(images[offset])
            except Exception:
                self._mark_failed(batch_id)
                raise
            self._fill(batch_id, tensor, params)
            return batch_id, params

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(_work, range(len(images))))

        log.debug(f"Feed slots {first}..{first + len(images) - 1} ready")
        return results

    def finalize(self) -> Tuple[np.ndarray, List[LetterboxParams]]:
        """배치 텐서 생성 후 builder 초기화

        Returns:
            (batched_tensor (B, 3, H, W) float32, geometry_list)

        Raises:
            ConfigurationError: 비어 있거나 완료되지 않은 slot이 있는 경우.
                이때 slot은 유지되므로 reset()으로 비운 뒤 다시 채워야 함
        """
        with self._lock:
            slots = self._slots
            if not slots:
                raise ConfigurationError("Cannot finalize an empty batch")

            pending = [i for i, slot in enumerate(slots) if not slot.ready]
            if pending:
                raise ConfigurationError(f"Batch has unfinished slots: {pending}")

            shapes = {slot.tensor.shape for slot in slots}
            if len(shapes) != 1:
                raise ConfigurationError(f"Inconsistent tensor shapes in batch: {sorted(shapes)}")

            self._slots = []

        tensor = np.stack([slot.tensor for slot in slots]).astype(np.float32, copy=False)
        geometries = [slot.params for slot in slots]
        log.debug(f"Finalized batch: {tensor.shape}")
        return tensor, geometries
