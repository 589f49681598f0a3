"""Human presence classification over two interchangeable detectors.

``face-first`` (selfies) asks the face detector and falls back to the
person detector; ``body-first`` (video frames) is the mirror image. The
fallback runs when the primary errors or returns nothing confident
enough. Nothing raised by a detector crosses ``classify``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

import numpy as np

from vhp.schemas.detection import BoundingBox, DetectionResult
from vhp.services.detectors import FaceDetector, PersonDetector, RawDetection

logger = logging.getLogger(__name__)

# Face box must cover this share of the frame (selfie step applies 2% on top)
FACE_MIN_AREA_RATIO = 0.01
# Person box coverage window: rejects distant slivers and lens-hugging bodies
PERSON_MIN_COVERAGE = 0.05
PERSON_MAX_COVERAGE = 0.90

PERSON_LABEL = "person"


class DetectionMode(StrEnum):
    FACE_FIRST = "face-first"
    BODY_FIRST = "body-first"


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _to_box(d: RawDetection) -> BoundingBox:
    return BoundingBox(
        x=d.x, y=d.y, width=d.width, height=d.height, confidence=_clamp(d.confidence)
    )


_Strategy = Callable[[np.ndarray, float, float, int], Awaitable[DetectionResult]]


class HumanPresenceClassifier:
    def __init__(
        self,
        face_detector: FaceDetector,
        person_detector: PersonDetector,
        *,
        face_min_area_ratio: float = FACE_MIN_AREA_RATIO,
        person_min_coverage: float = PERSON_MIN_COVERAGE,
        person_max_coverage: float = PERSON_MAX_COVERAGE,
    ) -> None:
        self._face = face_detector
        self._person = person_detector
        self._face_min_area_ratio = face_min_area_ratio
        self._person_min_coverage = person_min_coverage
        self._person_max_coverage = person_max_coverage

    async def classify(
        self,
        image: np.ndarray,
        mode: DetectionMode = DetectionMode.FACE_FIRST,
        min_confidence: float = 0.6,
        max_results: int = 3,
    ) -> DetectionResult:
        height, width = image.shape[:2]
        image_area = float(width * height)
        if image_area <= 0:
            return DetectionResult(has_human=False, details="Invalid image dimensions")

        strategies: list[tuple[str, _Strategy]] = [
            ("face", self._classify_faces),
            ("person", self._classify_persons),
        ]
        if mode == DetectionMode.BODY_FIRST:
            strategies.reverse()
        (primary_name, primary), (fallback_name, fallback) = strategies

        errors: list[str] = []
        primary_result: DetectionResult | None = None
        try:
            primary_result = await primary(image, image_area, min_confidence, max_results)
            if primary_result.has_human and primary_result.confidence >= min_confidence:
                return primary_result
        except Exception as e:
            logger.warning(
                "%s detector failed, falling back to %s: %s", primary_name, fallback_name, e
            )
            errors.append(f"{primary_name}: {e}")

        try:
            fallback_result = await fallback(image, image_area, min_confidence, max_results)
        except Exception as e:
            logger.warning("%s detector failed: %s", fallback_name, e)
            errors.append(f"{fallback_name}: {e}")
            if primary_result is not None:
                return primary_result
            return DetectionResult(
                has_human=False,
                confidence=0.0,
                details=f"Detection failed: {'; '.join(errors)}",
            )

        if fallback_result.has_human or primary_result is None:
            return fallback_result
        # both negative: surface whichever saw more
        if fallback_result.confidence > primary_result.confidence:
            return fallback_result
        return primary_result

    async def _classify_faces(
        self, image: np.ndarray, image_area: float, min_confidence: float, max_results: int
    ) -> DetectionResult:
        candidates = sorted(
            await self._face.detect(image), key=lambda d: d.confidence, reverse=True
        )
        if not candidates:
            return DetectionResult(
                has_human=False, details="No faces detected in image", source="face"
            )

        best_raw = _clamp(candidates[0].confidence)
        confident = [d for d in candidates if d.confidence >= min_confidence]
        if not confident:
            return DetectionResult(
                has_human=False,
                confidence=best_raw,
                details=(
                    f"{len(candidates)} face(s) detected but all below confidence "
                    f"threshold ({best_raw:.0%} < {min_confidence:.0%})"
                ),
                source="face",
            )

        kept = [
            d for d in confident if d.area / image_area >= self._face_min_area_ratio
        ][:max_results]
        if not kept:
            return DetectionResult(
                has_human=False,
                confidence=best_raw,
                details="Faces detected but too small",
                source="face",
            )

        confidence = _clamp(kept[0].confidence)
        return DetectionResult(
            has_human=True,
            confidence=confidence,
            details=f"{len(kept)} valid face(s) detected ({confidence:.1%} confidence)",
            detection_count=len(kept),
            bounding_boxes=[_to_box(d) for d in kept],
            source="face",
        )

    async def _classify_persons(
        self, image: np.ndarray, image_area: float, min_confidence: float, max_results: int
    ) -> DetectionResult:
        candidates = sorted(
            (d for d in await self._person.detect(image) if d.label == PERSON_LABEL),
            key=lambda d: d.confidence,
            reverse=True,
        )
        if not candidates:
            return DetectionResult(
                has_human=False, details="No person detected", source="person"
            )

        best_raw = _clamp(candidates[0].confidence)
        confident = [d for d in candidates if d.confidence >= min_confidence]
        if not confident:
            return DetectionResult(
                has_human=False,
                confidence=best_raw,
                details=f"Person detected but confidence too low ({best_raw:.1%})",
                source="person",
            )

        kept = [
            d
            for d in confident
            if self._person_min_coverage
            <= d.area / image_area
            <= self._person_max_coverage
        ][:max_results]
        if not kept:
            return DetectionResult(
                has_human=False,
                confidence=best_raw,
                details="Person detected but coverage suspicious",
                source="person",
            )

        confidence = _clamp(kept[0].confidence)
        return DetectionResult(
            has_human=True,
            confidence=confidence,
            details=f"{len(kept)} person(s) detected ({confidence:.1%} confidence)",
            detection_count=len(kept),
            bounding_boxes=[_to_box(d) for d in kept],
            source="person",
        )
