"""Face and person detectors backed by ultralytics YOLO (lazy-loaded)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

from vhp.exceptions import DetectorError, ModelLoadError

if TYPE_CHECKING:
    from vhp.config import Settings
    from vhp.services.model_manager import ModelManager

logger = logging.getLogger(__name__)

FACE_MODEL = "face"
PERSON_MODEL = "person"


@dataclass(frozen=True)
class RawDetection:
    """One unfiltered candidate: top-left corner, size, score and class label."""

    x: float
    y: float
    width: float
    height: float
    confidence: float
    label: str

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)


@runtime_checkable
class FaceDetector(Protocol):
    async def detect(self, image: np.ndarray) -> list[RawDetection]: ...


@runtime_checkable
class PersonDetector(Protocol):
    async def detect(self, image: np.ndarray) -> list[RawDetection]: ...


def yolo_loader(model_path: str):
    """Build a ModelManager loader for a YOLO weights file."""

    def _load():
        path = Path(model_path)
        # bare names such as "yolov8n.pt" are downloaded by ultralytics
        if path.parent != Path(".") and not path.exists():
            raise ModelLoadError(
                f"Detection model not found: {path}. "
                "Download the weights (see scripts/download_models.py)."
            )
        from ultralytics import YOLO

        return YOLO(str(path))

    return _load


class YoloDetector:
    """Runs a YOLO model held by the ModelManager on a BGR frame."""

    def __init__(
        self,
        manager: ModelManager,
        model_type: str,
        *,
        label: str | None = None,
        device: str = "cpu",
        raw_confidence: float = 0.1,
    ) -> None:
        self._manager = manager
        self._model_type = model_type
        self._label = label
        self._device = device
        self._raw_confidence = raw_confidence

    async def detect(self, image: np.ndarray) -> list[RawDetection]:
        model = await self._manager.ensure_loaded(self._model_type)
        try:
            return await asyncio.to_thread(self._predict, model, image)
        except Exception as e:
            raise DetectorError(f"{self._model_type} detector failed: {e}") from e

    def _predict(self, model, image: np.ndarray) -> list[RawDetection]:
        results = model.predict(
            source=image, device=self._device, conf=self._raw_confidence, verbose=False
        )
        detections: list[RawDetection] = []
        for r in results:
            for box in r.boxes:
                x1, y1, x2, y2 = [float(v) for v in box.xyxy[0]]
                label = self._label or r.names[int(box.cls)]
                detections.append(
                    RawDetection(
                        x=x1,
                        y=y1,
                        width=x2 - x1,
                        height=y2 - y1,
                        confidence=round(float(box.conf[0]), 4),
                        label=label,
                    )
                )
        return detections


class YoloFaceDetector(YoloDetector):
    def __init__(self, manager: ModelManager, **kwargs) -> None:
        super().__init__(manager, FACE_MODEL, label="face", **kwargs)


class YoloPersonDetector(YoloDetector):
    """COCO detector; every class is returned, callers keep ``person``."""

    def __init__(self, manager: ModelManager, **kwargs) -> None:
        super().__init__(manager, PERSON_MODEL, **kwargs)


def build_detectors(
    manager: ModelManager, settings: Settings
) -> tuple[YoloFaceDetector, YoloPersonDetector]:
    """Register the YOLO loaders on *manager* and return both detectors."""
    manager.register_loader(FACE_MODEL, yolo_loader(settings.face_detect_model))
    manager.register_loader(PERSON_MODEL, yolo_loader(settings.person_detect_model))
    device = settings.resolve_detect_device()
    options = {"device": device, "raw_confidence": settings.detect_raw_confidence}
    logger.info("Detectors configured on %s", device)
    return YoloFaceDetector(manager, **options), YoloPersonDetector(manager, **options)
