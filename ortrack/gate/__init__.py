"""
ORT-Track Gate Module

Mahalanobis 거리 기반 게이팅 모듈
- chi-square 95% 임계값 (위치만: dof 2, 전체: dof 4)
- cost matrix의 불가능한 (트랙, 검출) 쌍을 INFTY_COST로 교체
- 통계: total / gated / passed
"""

from ortrack.gate.engine import INFTY_COST, GatingEngine

__all__ = ["INFTY_COST", "GatingEngine"]
