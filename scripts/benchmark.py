"""
ORT-Track CPU Benchmark

전처리/후처리/트래킹 단계별 CPU 지연 시간을 측정합니다.
(Letterbox, Batch Feed, Decode, Kalman predict/update, 선택적으로 ONNX 추론)
p95, p99 지연 시간으로 실시간성을 확인합니다.

Usage:
    python scripts/benchmark.py --iters 500
    python scripts/benchmark.py --model weights/yolov7-tiny.onnx --batch 4
"""

import argparse
import logging
import time
from pathlib import Path
from typing import Callable, Dict, List

import numpy as np
from tqdm import tqdm

from ortrack.detect.decoder import decode
from ortrack.detect.feed import BatchFeedBuilder
from ortrack.detect.letterbox import LetterboxConfig, apply_letterbox
from ortrack.detect.runtime import OnnxDetector
from ortrack.track.kalman_filter import KalmanFilter

logging.basicConfig(level=logging.INFO)
log = logging.getLogger(__name__)


def synthetic_rows(num_rows: int, batch_size: int, target: int, num_classes: int, rng) -> np.ndarray:
    """(N, 7) 가짜 검출 결과"""
    x0 = rng.uniform(0, target * 0.8, num_rows)
    y0 = rng.uniform(0, target * 0.8, num_rows)
    w = rng.uniform(8, target * 0.2, num_rows)
    h = rng.uniform(8, target * 0.2, num_rows)
    return np.stack([
        rng.integers(0, batch_size, num_rows),
        x0, y0, x0 + w, y0 + h,
        rng.integers(0, num_classes, num_rows),
        rng.uniform(0, 1, num_rows),
    ], axis=1)


class PipelineBenchmark:
    def __init__(self, image_shape=(720, 1280), target: int = 640, batch_size: int = 1,
                 num_rows: int = 100, model_path: str = None, seed: int = 0):
        self.rng = np.random.default_rng(seed)
        self.batch_size = batch_size
        self.config = LetterboxConfig(target_shape=(target, target), allow_upscale=False)
        self.images = [
            self.rng.uniform(0, 255, (3, *image_shape)).astype(np.float32)
            for _ in range(batch_size)
        ]
        self.categories = [f"class_{i}" for i in range(80)]
        self.rows = synthetic_rows(num_rows, batch_size, target, len(self.categories), self.rng)
        self.kf = KalmanFilter()

        self.detector = None
        if model_path:
            self.detector = OnnxDetector(model_path, confidence_threshold=0.25)
            log.info("Warming up...")
            self.detector.warmup(cycles=10, batch_size=batch_size)

    def _time(self, name: str, fn: Callable[[], object], iterations: int) -> List[float]:
        latencies = []
        for _ in tqdm(range(iterations), desc=name, leave=False):
            start = time.perf_counter()
            fn()
            latencies.append((time.perf_counter() - start) * 1000)  # ms
        return latencies

    def run(self, iterations: int = 500) -> Dict[str, List[float]]:
        """단계별 벤치마크 실행"""
        log.info(f"Starting Benchmark: {iterations} iterations, batch {self.batch_size}")

        builder = BatchFeedBuilder(self.config)

        def feed():
            builder.add_images(self.images)
            return builder.finalize()

        _, geometries = feed()

        mean, cov = self.kf.initiate(np.array([320.0, 240.0, 0.5, 80.0]))
        measurement = np.array([322.0, 241.0, 0.5, 81.0])

        def kalman_step():
            m, c = self.kf.predict(mean, cov)
            return self.kf.update(m, c, measurement, 0.8)

        stages = {
            'letterbox': lambda: apply_letterbox(self.images[0], self.config),
            'feed': feed,
            'decode': lambda: decode(self.rows, self.categories, geometries, 0.25),
            'kalman': kalman_step,
        }
        if self.detector is not None:
            stages['onnx_e2e'] = lambda: self.detector.infer(self.images)

        results = {name: self._time(name, fn, iterations) for name, fn in stages.items()}
        self.print_stats(results)
        return results

    def print_stats(self, results: Dict[str, List[float]]):
        log.info("=" * 60)
        log.info("BENCHMARK RESULTS")
        log.info("=" * 60)
        for name, latencies in results.items():
            latencies = np.array(latencies)
            log.info(f"[{name}]")
            log.info(f"  Mean:   {np.mean(latencies):.3f} ms")
            log.info(f"  Median: {np.median(latencies):.3f} ms")
            log.info(f"  p95:    {np.percentile(latencies, 95):.3f} ms")
            log.info(f"  p99:    {np.percentile(latencies, 99):.3f} ms")
            log.info(f"  Max:    {np.max(latencies):.3f} ms")
        log.info("=" * 60)

        # Target Check (CPU Target: 30 FPS / < 33ms)
        total_p95 = sum(np.percentile(v, 95) for v in results.values())
        if total_p95 < 33.3:
            log.info("✅ Real-time (30 FPS+)")
        elif total_p95 < 66.6:
            log.info("⚠️ Playable (15 FPS+)")
        else:
            log.info("❌ Too Slow (< 15 FPS)")


def main():
    parser = argparse.ArgumentParser(description='ORT-Track CPU Benchmark')
    parser.add_argument('--model', type=str, default=None, help='Optional ONNX model path')
    parser.add_argument('--iters', type=int, default=500, help='Iterations per stage')
    parser.add_argument('--batch', type=int, default=1, help='Batch size')
    parser.add_argument('--target', type=int, default=640, help='Square network input size')
    parser.add_argument('--rows', type=int, default=100, help='Synthetic detection rows')

    args = parser.parse_args()

    if args.model and not Path(args.model).exists():
        log.error(f"Model file not found: {args.model}")
        return

    bench = PipelineBenchmark(
        target=args.target,
        batch_size=args.batch,
        num_rows=args.rows,
        model_path=args.model,
    )
    bench.run(args.iters)


if __name__ == '__main__':
    main()
