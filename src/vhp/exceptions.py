class VHPError(Exception):
    """Base exception for the VHP verification service."""


class MediaValidationError(VHPError):
    """Raised when an uploaded blob is not usable media (type, size, decode)."""


class FrameCaptureError(VHPError):
    """Raised when a single frame cannot be read from a video source."""


class ModelLoadError(VHPError):
    """Raised when a detector model cannot be loaded."""


class DetectorError(VHPError):
    """Raised when a detector invocation fails."""


class JudgeError(VHPError):
    """Raised when the challenge judge cannot produce a verdict."""


class ChallengeGenerationError(VHPError):
    """Raised when the challenge model cannot be reached."""
