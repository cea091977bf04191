"""
ORT-Track Gating Engine

칼만 필터 상태 분포 기반 Mahalanobis gating.
외부 데이터 연관(Hungarian 등) 전에 물리적으로 불가능한 (트랙, 검출) 쌍을 걸러냅니다.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np

from ortrack.exceptions import ConfigurationError
from ortrack.track.kalman_filter import CHI2INV95, KalmanFilter
from ortrack.track.track import KalmanTrack

log = logging.getLogger(__name__)

INFTY_COST = 1e5


class GatingEngine:
    """
    Mahalanobis Gating Engine

    Decision Flow:
    1. Track 상태 (mean, covariance) → 측정 공간 투영
    2. 각 측정값과의 squared Mahalanobis 거리 계산
    3. Decision: 거리 <= CHI2INV95[dof] 이면 Pass, 아니면 Gated
    """

    def __init__(
        self,
        kalman_filter: Optional[KalmanFilter] = None,
        only_position: bool = False,   # True면 (cx, cy)만 사용 (dof 2)
        gated_cost: float = INFTY_COST,  # gated 항목에 채울 cost
    ):
        self.kalman_filter = kalman_filter or KalmanFilter()
        self.only_position = only_position
        self.gated_cost = gated_cost
        self.threshold = CHI2INV95[2 if only_position else 4]

        # 통계
        self.stats = {
            'total': 0,
            'gated': 0,
            'passed': 0
        }

    def distances(self, track: KalmanTrack, measurements: np.ndarray) -> np.ndarray:
        """트랙과 측정값들 [cx, cy, a, h] 사이의 gating 거리"""
        return self.kalman_filter.gating_distance(
            track.mean, track.covariance, measurements, self.only_position
        )

    def gate(self, track: KalmanTrack, measurements: np.ndarray) -> np.ndarray:
        """
        측정값별 통과 여부

        Args:
            track: 예측된 트랙
            measurements: (N, 4) [cx, cy, a, h]

        Returns:
            (N,) bool mask (True = 연관 가능)
        """
        passed = self.distances(track, measurements) <= self.threshold
        self._record(passed)
        return passed

    def gate_cost_matrix(
        self,
        cost_matrix: np.ndarray,
        tracks: Sequence[KalmanTrack],
        measurements: np.ndarray,
    ) -> np.ndarray:
        """
        Cost matrix에서 불가능한 항목을 gated_cost로 교체

        Args:
            cost_matrix: (num_tracks, num_measurements) 연관 cost
            tracks: 예측된 트랙 리스트 (행 순서)
            measurements: (num_measurements, 4) [cx, cy, a, h] (열 순서)

        Returns:
            gating이 적용된 새 cost matrix
        """
        cost_matrix = np.array(cost_matrix, dtype=np.float64)
        measurements = np.asarray(measurements, dtype=np.float64).reshape(-1, 4)
        if cost_matrix.shape != (len(tracks), len(measurements)):
            raise ConfigurationError(
                f"cost_matrix shape {cost_matrix.shape} does not match "
                f"({len(tracks)} tracks, {len(measurements)} measurements)"
            )
        if cost_matrix.size == 0:
            return cost_matrix

        for row, track in enumerate(tracks):
            passed = self.gate(track, measurements)
            cost_matrix[row, ~passed] = self.gated_cost

        log.debug(f"Gated cost matrix {cost_matrix.shape}: gated ratio {self.get_gated_ratio():.2f}")
        return cost_matrix

    def _record(self, passed: np.ndarray) -> None:
        n_passed = int(np.count_nonzero(passed))
        self.stats['total'] += int(passed.size)
        self.stats['passed'] += n_passed
        self.stats['gated'] += int(passed.size) - n_passed

    def get_gated_ratio(self) -> float:
        """현재까지 걸러진 쌍의 비율"""
        if self.stats['total'] == 0:
            return 0.0
        return self.stats['gated'] / self.stats['total']

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)

    def reset_stats(self):
        self.stats = {'total': 0, 'gated': 0, 'passed': 0}
