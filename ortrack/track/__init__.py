"""
ORT-Track Track Module

8차원 칼만 필터 기반 트랙 상태 추정
- KalmanFilter: initiate / predict / project / update / gating_distance
- KalmanTrack: 트랙 1개의 상태와 생애주기 (Tentative → Tracked)
- 데이터 연관(association)과 트랙 삭제는 외부 트래커 담당
"""

from ortrack.track.kalman_filter import CHI2INV95, KalmanFilter
from ortrack.track.track import KalmanTrack, TrackState, xyah_to_xyxy, xyxy_to_xyah

__all__ = [
    "CHI2INV95",
    "KalmanFilter",
    "KalmanTrack",
    "TrackState",
    "xyah_to_xyxy",
    "xyxy_to_xyah",
]
