"""
Single-track state holder

KalmanFilter는 상태를 갖지 않으므로, 트랙 하나의 (mean, covariance)와
생애주기 정보(상태, hit 수, age)를 이 클래스가 보관합니다.

State machine:
    Tentative --(첫 update)--> Tracked
    트랙 삭제는 외부 트래커가 결정 (terminal state 없음)
"""

import logging
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from ortrack.exceptions import ConfigurationError
from ortrack.track.kalman_filter import KalmanFilter

log = logging.getLogger(__name__)


class TrackState(Enum):
    TENTATIVE = "tentative"
    TRACKED = "tracked"


def xyxy_to_xyah(box: Sequence[float]) -> np.ndarray:
    """(x0, y0, x1, y1) → (cx, cy, aspect, height)"""
    x0, y0, x1, y1 = (float(v) for v in box)
    w, h = x1 - x0, y1 - y0
    if h <= 0:
        raise ConfigurationError(f"Box height must be positive, got {box!r}")
    return np.array([x0 + w / 2.0, y0 + h / 2.0, w / h, h])


def xyah_to_xyxy(xyah: Sequence[float]) -> np.ndarray:
    """(cx, cy, aspect, height) → (x0, y0, x1, y1)"""
    cx, cy, a, h = (float(v) for v in xyah[:4])
    w = a * h
    return np.array([cx - w / 2.0, cy - h / 2.0, cx + w / 2.0, cy + h / 2.0])


class KalmanTrack:
    """칼만 필터로 추정되는 트랙 1개

    Args:
        measurement: 첫 관측 [cx, cy, a, h]
        kalman_filter: 공유 KalmanFilter (여러 트랙이 같이 사용해도 안전)
        track_id: 외부 트래커가 부여하는 ID
        score: 첫 관측의 검출 신뢰도
    """

    def __init__(
        self,
        measurement: Sequence[float],
        kalman_filter: Optional[KalmanFilter] = None,
        track_id: int = 0,
        score: float = 0.0,
    ):
        self.kalman_filter = kalman_filter or KalmanFilter()
        self.track_id = track_id
        self.score = score
        self.mean, self.covariance = self.kalman_filter.initiate(np.asarray(measurement, dtype=np.float64))

        self.state = TrackState.TENTATIVE
        self.hits = 1
        self.age = 1
        self.time_since_update = 0

    @classmethod
    def from_xyxy(cls, box: Sequence[float], **kwargs) -> "KalmanTrack":
        return cls(xyxy_to_xyah(box), **kwargs)

    @property
    def is_tentative(self) -> bool:
        return self.state is TrackState.TENTATIVE

    @property
    def is_tracked(self) -> bool:
        return self.state is TrackState.TRACKED

    @property
    def xyah(self) -> np.ndarray:
        return self.mean[:4].copy()

    @property
    def xyxy(self) -> np.ndarray:
        return xyah_to_xyxy(self.mean)

    @property
    def velocity(self) -> np.ndarray:
        """(vcx, vcy) px/frame"""
        return self.mean[4:6].copy()

    def get_uncertainty(self) -> float:
        """위치 불확실성 (위치 공분산 trace)"""
        return float(np.trace(self.covariance[:2, :2]))

    def predict(self) -> np.ndarray:
        """한 프레임 예측 후 예측 bbox (xyxy) 반환"""
        self.mean, self.covariance = self.kalman_filter.predict(self.mean, self.covariance)
        self.age += 1
        self.time_since_update += 1
        return self.xyxy

    def update(self, measurement: Sequence[float], confidence: float = 0.0) -> np.ndarray:
        """관측으로 보정 후 보정된 bbox (xyxy) 반환

        Raises:
            ConfigurationError: confidence가 [0, 1] 밖인 경우 (트랙은 변경되지 않음)
            NumericalError: 공분산이 손상된 경우. 트랙은 외부에서 폐기해야 함.
        """
        self.mean, self.covariance = self.kalman_filter.update(
            self.mean, self.covariance, np.asarray(measurement, dtype=np.float64), confidence
        )
        self.score = confidence
        self.hits += 1
        self.time_since_update = 0

        if self.state is TrackState.TENTATIVE:
            self.state = TrackState.TRACKED
            log.debug(f"Track {self.track_id} confirmed after {self.hits} hits")
        return self.xyxy

    def update_xyxy(self, box: Sequence[float], confidence: float = 0.0) -> np.ndarray:
        return self.update(xyxy_to_xyah(box), confidence)

    def __repr__(self) -> str:
        return f"KalmanTrack(id={self.track_id}, state={self.state.value}, hits={self.hits}, age={self.age})"
