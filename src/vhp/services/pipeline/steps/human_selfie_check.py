"""Step 3: the selfie must show a confident, reasonably large face.

The face must cover at least 2% of the photo here, stricter than the 1%
the classifier itself applies to candidate faces.
"""

from __future__ import annotations

import logging

from vhp.exceptions import MediaValidationError
from vhp.schemas.detection import DetectionResult
from vhp.schemas.verification import StepResult, to_percent
from vhp.services.human_detector import DetectionMode, HumanPresenceClassifier
from vhp.services.media import KB, MB, decode_image, validate_photo_blob
from vhp.services.pipeline.base import VerificationContext, report
from vhp.utils.types import ProgressCallback

logger = logging.getLogger(__name__)

SELFIE_MIN_FACE_RATIO = 0.02


def largest_face_ratio(detection: DetectionResult, image_area: float) -> float | None:
    """Area share of the largest box, or None when no box is available."""
    if not detection.bounding_boxes or image_area <= 0:
        return None
    largest = max(detection.bounding_boxes, key=lambda b: b.area)
    return largest.area / image_area


class HumanSelfieCheckStep:
    step_id = "human-selfie-check"
    name = "Human Detection in Selfie"
    failure_message = "Face detection failed"

    def __init__(
        self,
        classifier: HumanPresenceClassifier,
        *,
        min_confidence: float = 0.6,
        max_faces: int = 3,
        min_face_ratio: float = SELFIE_MIN_FACE_RATIO,
        min_resolution: int = 100,
        decode_timeout_s: float = 5.0,
        min_bytes: int = KB,
        max_bytes: int = 10 * MB,
    ) -> None:
        self._classifier = classifier
        self._min_confidence = min_confidence
        self._max_faces = max_faces
        self._min_face_ratio = min_face_ratio
        self._min_resolution = min_resolution
        self._decode_timeout_s = decode_timeout_s
        self._min_bytes = min_bytes
        self._max_bytes = max_bytes

    async def execute(
        self,
        ctx: VerificationContext,
        on_progress: ProgressCallback | None = None,
    ) -> StepResult:
        try:
            report(on_progress, 5, "Validating photo format...")
            ok, message = validate_photo_blob(
                ctx.photo, min_bytes=self._min_bytes, max_bytes=self._max_bytes
            )
            if not ok:
                raise MediaValidationError(message)

            report(on_progress, 15, "Loading image for analysis...")
            image = await decode_image(ctx.photo, self._decode_timeout_s)
            height, width = image.shape[:2]
            if width <= 0 or height <= 0:
                raise MediaValidationError("Invalid image dimensions")
            if width < self._min_resolution or height < self._min_resolution:
                raise MediaValidationError(
                    "Image resolution too low "
                    f"(minimum {self._min_resolution}x{self._min_resolution})"
                )
            logger.info("Selfie loaded: %dx%d", width, height)

            report(on_progress, 30, "Loading face detection models...")
            detection = await self._classifier.classify(
                image,
                DetectionMode.FACE_FIRST,
                min_confidence=self._min_confidence,
                max_results=self._max_faces,
            )
            report(on_progress, 85, "Analyzing face detection results...")
        except Exception as e:
            logger.error("Human selfie check error: %s", e, exc_info=True)
            report(on_progress, 100, "Face detection failed due to error")
            return StepResult(
                step_id=self.step_id,
                passed=False,
                confidence=0,
                details=f"Face detection error: {e}",
            )

        face_ratio = largest_face_ratio(detection, float(width * height))
        ctx.selfie_detection = detection
        ctx.selfie_face_ratio = face_ratio

        confident = detection.confidence >= self._min_confidence
        large_enough = face_ratio is None or face_ratio >= self._min_face_ratio
        passed = detection.has_human and confident and large_enough

        if passed:
            details = f"Human face detected ({to_percent(detection.confidence)}% confidence)"
            if face_ratio is not None:
                details += f", face covers {face_ratio * 100:.1f}% of image"
            if detection.detection_count > 1:
                details += f", {detection.detection_count} faces total"
        elif detection.has_human and not confident:
            details = (
                "Face detected but confidence too low "
                f"({to_percent(detection.confidence)}% < {to_percent(self._min_confidence)}%)"
            )
        elif detection.has_human and not large_enough:
            details = (
                "Face detected but too small for selfie verification "
                f"({face_ratio * 100:.1f}% < {self._min_face_ratio * 100:g}%)"
            )
        else:
            details = detection.details

        report(on_progress, 100, details)
        return StepResult(
            step_id=self.step_id,
            passed=passed,
            confidence=to_percent(detection.confidence) if passed else 0,
            details=details,
            extras={
                "face_detected": detection.has_human,
                "face_confidence": detection.confidence,
                "face_ratio": face_ratio,
                "source": detection.source,
            },
        )
