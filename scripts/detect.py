"""
ORT-Track Detection Script

Hydra 설정으로 ONNX 검출기를 실행하고 결과를 로그/파일로 출력합니다.

Usage:
    python scripts/detect.py runtime.model_path=weights/yolov7-tiny.onnx images=[a.jpg,b.jpg]

    # threshold / 입력 크기 오버라이드
    python scripts/detect.py runtime.model_path=m.onnx images=[a.jpg] \
        decode.confidence_threshold=0.5 preprocess.target_shape=[480,640]

    # 결과 저장 (.json 또는 .yaml)
    python scripts/detect.py runtime.model_path=m.onnx images=[a.jpg] output=results.json
"""

import json
import logging
from pathlib import Path
from typing import Dict, List

import cv2
import hydra
import yaml
from hydra.utils import to_absolute_path
from omegaconf import DictConfig, OmegaConf

from ortrack.config import to_letterbox_config
from ortrack.detect.decoder import group_by_batch
from ortrack.detect.letterbox import image_to_chw
from ortrack.detect.runtime import OnnxDetector
from ortrack.exceptions import ConfigurationError

log = logging.getLogger(__name__)


def load_images(paths: List[str]) -> List:
    """OpenCV로 이미지 로드 → CHW RGB 버퍼"""
    images = []
    for p in paths:
        path = Path(to_absolute_path(p))
        frame = cv2.imread(str(path))
        if frame is None:
            raise ConfigurationError(f"Could not read image: {path}")
        images.append(image_to_chw(frame, bgr=True))
        log.info(f"Loaded {path.name}: {frame.shape[1]}x{frame.shape[0]}")
    return images


def save_results(results: Dict[str, list], output: str) -> Path:
    out_path = Path(to_absolute_path(output))
    out_path.parent.mkdir(parents=True, exist_ok=True)

    with open(out_path, 'w') as f:
        if out_path.suffix in ('.yaml', '.yml'):
            yaml.safe_dump(results, f, sort_keys=False)
        else:
            json.dump(results, f, indent=2)

    log.info(f"Saved detections: {out_path}")
    return out_path


@hydra.main(version_base=None, config_path="../configs", config_name="config")
def main(cfg: DictConfig) -> None:
    log.info("=" * 60)
    log.info("ORT-Track Detection")
    log.info("=" * 60)
    log.info(f"\nFull Config:\n{OmegaConf.to_yaml(cfg)}")

    if not cfg.runtime.model_path:
        raise ConfigurationError("runtime.model_path is required")
    if not cfg.images:
        raise ConfigurationError("No images given (images=[...])")

    categories = list(cfg.decode.categories) if cfg.decode.categories else None
    detector = OnnxDetector(
        to_absolute_path(cfg.runtime.model_path),
        categories=categories,
        confidence_threshold=cfg.decode.confidence_threshold,
        providers=list(cfg.runtime.providers),
        letterbox_config=to_letterbox_config(cfg.preprocess),
    )
    if cfg.runtime.warmup_cycles > 0:
        detector.warmup(cfg.runtime.warmup_cycles)

    images = load_images(list(cfg.images))
    detections = detector.infer(images, max_workers=cfg.preprocess.max_workers)

    results = {}
    for path, dets in zip(cfg.images, group_by_batch(detections, len(images))):
        log.info("-" * 30)
        log.info(f"{path}: {len(dets)} detections")
        for det in dets:
            log.info(f"  {det.class_name:<12} {det.score:.2f}  xyxy={list(det.box_xyxy)}")
        results[str(path)] = [det.to_dict() for det in dets]

    log.info("=" * 60)
    log.info(f"Total detections: {len(detections)}")

    if cfg.output:
        save_results(results, cfg.output)


if __name__ == "__main__":
    main()
