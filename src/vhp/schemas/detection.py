"""Human presence detection schemas."""

from typing import Literal

from pydantic import BaseModel, Field

DetectionSource = Literal["face", "person", "none"]


class BoundingBox(BaseModel):
    """Axis-aligned box in pixel coordinates of the analysed image."""

    x: float
    y: float
    width: float
    height: float
    confidence: float = Field(ge=0.0, le=1.0)

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)


class DetectionResult(BaseModel):
    """Human presence verdict for one still image."""

    has_human: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    details: str = ""
    detection_count: int = 0
    bounding_boxes: list[BoundingBox] | None = None
    source: DetectionSource = "none"


class VideoDetectionResult(BaseModel):
    """Aggregate of per-frame detections over one video scan."""

    has_human: bool
    confidence: float = Field(default=0.0, ge=0.0, le=0.95)
    max_confidence: float = 0.0
    detection_count: int = 0
    frames_checked: int = 0
    longest_streak: int = 0
    stopped_early: bool = False
    details: str = ""
