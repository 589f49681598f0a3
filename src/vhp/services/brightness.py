"""Perceptual brightness of a frame and the dark-frame policy."""

import numpy as np

# Frames darker than this carry nothing a detector or judge can use
DARK_SKIP_THRESHOLD = 10.0
# The first kept frame is retained below this level, with a warning
DARK_WARN_THRESHOLD = 15.0

_PIXEL_STRIDE = 4


def compute_brightness(image: np.ndarray) -> float:
    """Mean luma (0.299R + 0.587G + 0.114B) over every 4th pixel.

    *image* is an OpenCV BGR array (H x W x 3, or H x W x 4 with alpha).
    Grayscale arrays are averaged directly.
    """
    if image.size == 0:
        return 0.0
    if image.ndim == 2:
        return float(image.reshape(-1)[::_PIXEL_STRIDE].mean())

    pixels = image.reshape(-1, image.shape[2])[::_PIXEL_STRIDE].astype(np.float32)
    b, g, r = pixels[:, 0], pixels[:, 1], pixels[:, 2]
    return float((0.299 * r + 0.587 * g + 0.114 * b).mean())


def dark_frame_decision(brightness: float, kept_so_far: int) -> str:
    """Return ``"keep"``, ``"keep_dark"`` or ``"skip"`` for a sampled frame.

    The first frame of a sequence is never dropped, so an all-dark video
    still yields one frame.
    """
    if brightness < DARK_WARN_THRESHOLD and kept_so_far == 0:
        return "keep_dark"
    if brightness < DARK_SKIP_THRESHOLD:
        return "skip"
    return "keep"
