"""
Kalman Track Estimator

bbox 트랙의 위치/크기/속도를 프레임 간에 예측하고 보정하는 8차원 칼만 필터.

State: [cx, cy, a, h, vcx, vcy, va, vh]
    - (cx, cy): bbox 중심
    - a: 종횡비 (w / h)
    - h: 높이
    - v*: 각 성분의 속도 (Constant Velocity 모델)

Measurement: [cx, cy, a, h] (속도는 관측되지 않음)

노이즈 설계:
    - 위치/속도 표준편차는 현재 높이 h에 비례 (크기가 달라도 상대 불확실성 유지)
    - 종횡비만 고정된 작은 상수 사용
    - 관측 노이즈는 (1 - confidence)에 비례 → 신뢰도가 높을수록 측정에 강하게 끌림

Gain 계산과 Mahalanobis 거리는 역행렬 대신 Cholesky 분해를 사용합니다.
공분산이 양의 정부호가 아니면 NumericalError를 발생시킵니다 (상위 트래커가 트랙을 폐기).
"""

import logging
from typing import Tuple

import numpy as np
import scipy.linalg

from ortrack.exceptions import ConfigurationError, NumericalError

log = logging.getLogger(__name__)

# chi-square 분포 0.95 분위수 (자유도 1~9). Mahalanobis gating 임계값.
CHI2INV95 = {
    1: 3.8415,
    2: 5.9915,
    3: 7.8147,
    4: 9.4877,
    5: 11.070,
    6: 12.592,
    7: 14.067,
    8: 15.507,
    9: 16.919,
}

NDIM = 4
STATE_DIM = 2 * NDIM


def _check_vector(value: np.ndarray, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64)
    if arr.shape != (size,):
        raise ConfigurationError(f"{name} must have shape ({size},), got {arr.shape}")
    return arr


def _check_matrix(value: np.ndarray, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64)
    if arr.shape != (size, size):
        raise ConfigurationError(f"{name} must have shape ({size}, {size}), got {arr.shape}")
    return arr


def _require_finite(*arrays: np.ndarray) -> None:
    for arr in arrays:
        if not np.all(np.isfinite(arr)):
            raise NumericalError("Non-finite value in Kalman state")


class KalmanFilter:
    """8차원 Constant Velocity 칼만 필터

    F (motion)와 H (update) 행렬은 생성 시 한 번 만들어지고 읽기 전용입니다.
    모든 연산은 입력 배열을 수정하지 않고 새 배열을 반환합니다.

    Args:
        dt: 프레임 간격 (기본 1 frame)
        std_weight_position: 위치 표준편차 가중치 (높이 대비)
        std_weight_velocity: 속도 표준편차 가중치 (높이 대비)
    """

    def __init__(
        self,
        dt: float = 1.0,
        std_weight_position: float = 1.0 / 20,
        std_weight_velocity: float = 1.0 / 160,
    ):
        motion_mat = np.eye(STATE_DIM)
        for i in range(NDIM):
            motion_mat[i, NDIM + i] = dt
        update_mat = np.eye(NDIM, STATE_DIM)

        motion_mat.flags.writeable = False
        update_mat.flags.writeable = False
        self._motion_mat = motion_mat
        self._update_mat = update_mat

        self._std_weight_position = std_weight_position
        self._std_weight_velocity = std_weight_velocity

    @property
    def motion_mat(self) -> np.ndarray:
        return self._motion_mat

    @property
    def update_mat(self) -> np.ndarray:
        return self._update_mat

    def initiate(self, measurement: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """새 트랙 생성

        Args:
            measurement: [cx, cy, a, h]

        Returns:
            (mean (8,), covariance (8, 8)). 속도 성분은 0으로 시작.
        """
        measurement = _check_vector(measurement, NDIM, "measurement")
        _require_finite(measurement)

        mean = np.r_[measurement, np.zeros(NDIM)]

        h = measurement[3]
        wp, wv = self._std_weight_position, self._std_weight_velocity
        std = [
            2 * wp * h,
            2 * wp * h,
            1e-2,
            2 * wp * h,
            10 * wv * h,
            10 * wv * h,
            1e-5,
            10 * wv * h,
        ]
        covariance = np.diag(np.square(std))
        return mean, covariance

    def _process_noise(self, mean: np.ndarray) -> np.ndarray:
        h = mean[3]
        wp, wv = self._std_weight_position, self._std_weight_velocity
        std = [wp * h, wp * h, 1e-2, wp * h, wv * h, wv * h, 1e-5, wv * h]
        return np.diag(np.square(std))

    def predict(self, mean: np.ndarray, covariance: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """한 프레임 앞으로 예측

        Args:
            mean: (8,) 이전 프레임 상태
            covariance: (8, 8) 이전 프레임 공분산

        Returns:
            예측된 (mean, covariance)
        """
        mean = _check_vector(mean, STATE_DIM, "mean")
        covariance = _check_matrix(covariance, STATE_DIM, "covariance")

        motion_cov = self._process_noise(mean)
        mean = self._motion_mat @ mean
        covariance = self._motion_mat @ covariance @ self._motion_mat.T + motion_cov

        _require_finite(mean, covariance)
        return mean, covariance

    def multi_predict(self, means: np.ndarray, covariances: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """N개 트랙 동시 예측

        Args:
            means: (N, 8)
            covariances: (N, 8, 8)
        """
        means = np.asarray(means, dtype=np.float64)
        covariances = np.asarray(covariances, dtype=np.float64)
        if means.ndim != 2 or means.shape[1] != STATE_DIM:
            raise ConfigurationError(f"means must have shape (N, {STATE_DIM}), got {means.shape}")
        if covariances.shape != (len(means), STATE_DIM, STATE_DIM):
            raise ConfigurationError(
                f"covariances must have shape ({len(means)}, {STATE_DIM}, {STATE_DIM}), got {covariances.shape}"
            )

        h = means[:, 3]
        wp, wv = self._std_weight_position, self._std_weight_velocity
        ones = np.ones_like(h)
        std = np.stack([
            wp * h, wp * h, 1e-2 * ones, wp * h,
            wv * h, wv * h, 1e-5 * ones, wv * h,
        ], axis=1)
        motion_cov = np.zeros((len(means), STATE_DIM, STATE_DIM))
        idx = np.arange(STATE_DIM)
        motion_cov[:, idx, idx] = np.square(std)

        F = self._motion_mat
        means = means @ F.T
        covariances = F @ covariances @ F.T + motion_cov

        _require_finite(means, covariances)
        return means, covariances

    def project(
        self,
        mean: np.ndarray,
        covariance: np.ndarray,
        confidence: float = 0.0,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """상태 분포를 측정 공간으로 투영

        Args:
            mean: (8,)
            covariance: (8, 8)
            confidence: 검출 신뢰도 [0, 1]. 높을수록 관측 노이즈 감소.
                1.0이면 관측 노이즈가 0 (측정값을 그대로 신뢰). 이 상태에서 위치 공분산이
                0이 되므로, 같은 상태에 다시 1.0으로 update하면 NumericalError가 남.

        Returns:
            (projected mean (4,), projected covariance (4, 4))

        Raises:
            ConfigurationError: confidence가 [0, 1] 밖이거나 NaN인 경우
        """
        if not 0.0 <= confidence <= 1.0:
            raise ConfigurationError(f"confidence must be in [0, 1], got {confidence!r}")
        mean = _check_vector(mean, STATE_DIM, "mean")
        covariance = _check_matrix(covariance, STATE_DIM, "covariance")

        h = mean[3]
        wp = self._std_weight_position
        std = [wp * h, wp * h, 1e-1, wp * h]
        std = [(1.0 - confidence) * s for s in std]
        innovation_cov = np.diag(np.square(std))

        H = self._update_mat
        projected_mean = H @ mean
        projected_cov = H @ covariance @ H.T + innovation_cov
        return projected_mean, projected_cov

    def update(
        self,
        mean: np.ndarray,
        covariance: np.ndarray,
        measurement: np.ndarray,
        confidence: float = 0.0,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """측정값으로 상태 보정

        Args:
            mean: (8,) 예측된 상태
            covariance: (8, 8) 예측된 공분산
            measurement: [cx, cy, a, h]
            confidence: 검출 신뢰도 [0, 1] (project 참고)

        Returns:
            보정된 (mean, covariance)

        Raises:
            ConfigurationError: confidence가 [0, 1] 밖인 경우
            NumericalError: 투영 공분산이 양의 정부호가 아닌 경우
        """
        measurement = _check_vector(measurement, NDIM, "measurement")
        projected_mean, projected_cov = self.project(mean, covariance, confidence)
        mean = np.asarray(mean, dtype=np.float64)
        covariance = np.asarray(covariance, dtype=np.float64)
        _require_finite(projected_cov, measurement)

        try:
            chol_factor, lower = scipy.linalg.cho_factor(projected_cov, lower=True, check_finite=False)
            kalman_gain = scipy.linalg.cho_solve(
                (chol_factor, lower),
                (covariance @ self._update_mat.T).T,
                check_finite=False,
            ).T
        except np.linalg.LinAlgError as e:
            raise NumericalError(f"Projected covariance is not positive definite: {e}") from e

        innovation = measurement - projected_mean
        new_mean = mean + innovation @ kalman_gain.T
        new_covariance = covariance - kalman_gain @ projected_cov @ kalman_gain.T
        new_covariance = 0.5 * (new_covariance + new_covariance.T)

        _require_finite(new_mean, new_covariance)
        return new_mean, new_covariance

    def gating_distance(
        self,
        mean: np.ndarray,
        covariance: np.ndarray,
        measurements: np.ndarray,
        only_position: bool = False,
    ) -> np.ndarray:
        """상태 분포와 측정값들 사이의 squared Mahalanobis 거리

        Args:
            mean: (8,)
            covariance: (8, 8)
            measurements: (N, 4) [cx, cy, a, h]
            only_position: True면 (cx, cy)만 사용 (자유도 2)

        Returns:
            (N,) 거리. CHI2INV95[dof]와 비교하여 gating.
        """
        projected_mean, projected_cov = self.project(mean, covariance)

        measurements = np.asarray(measurements, dtype=np.float64)
        if measurements.ndim == 1:
            measurements = measurements[None, :]
        if measurements.ndim != 2 or measurements.shape[1] != NDIM:
            raise ConfigurationError(f"measurements must have shape (N, {NDIM}), got {measurements.shape}")

        if only_position:
            projected_mean, projected_cov = projected_mean[:2], projected_cov[:2, :2]
            measurements = measurements[:, :2]

        _require_finite(projected_cov)
        try:
            cholesky_factor = np.linalg.cholesky(projected_cov)
        except np.linalg.LinAlgError as e:
            raise NumericalError(f"Projected covariance is not positive definite: {e}") from e

        d = measurements - projected_mean
        z = scipy.linalg.solve_triangular(
            cholesky_factor, d.T, lower=True, check_finite=False, overwrite_b=True
        )
        return np.sum(z * z, axis=0)
