import math
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from vhp.config import Settings
from vhp.exceptions import FrameCaptureError, VHPError
from vhp.services.challenge_generator import ChallengeGenerator
from vhp.services.detectors import RawDetection
from vhp.services.judge import VisionJudgeService
from vhp.services.llm import VisionLLMClient
from vhp.services.media import MediaBlob
from vhp.services.model_manager import ModelManager
from vhp.services.pipeline import VerificationService
from vhp.services.task_store import TaskStore


def noise_image(width: int = 320, height: int = 240, level: int = 128, seed: int = 0) -> np.ndarray:
    """BGR frame of mild noise around *level* (noise keeps JPEGs above 1KB)."""
    rng = np.random.default_rng(seed)
    noise = rng.integers(-20, 21, size=(height, width, 3))
    return np.clip(level + noise, 0, 255).astype(np.uint8)


def jpeg_bytes(image: np.ndarray, quality: int = 90) -> bytes:
    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    assert ok
    return buf.tobytes()


class FakeVideoSource:
    """In-memory VideoSource; ``frame_at(t)`` decides what each offset shows."""

    def __init__(
        self,
        duration: float = 5.0,
        width: int = 320,
        height: int = 240,
        frame_at: Callable[[float], np.ndarray] | None = None,
        fail_at: set[float] | None = None,
    ) -> None:
        self.duration = duration
        self.width = width
        self.height = height
        self._frame_at = frame_at or (lambda t: noise_image(width, height))
        self._fail_at = fail_at or set()
        self._position = 0.0
        self.seeks: list[float] = []
        self.reads: list[float] = []
        self.closed = False

    @property
    def position(self) -> float:
        return self._position

    def seek(self, seconds: float) -> None:
        self.seeks.append(seconds)
        self._position = seconds

    def read_frame(self) -> np.ndarray:
        t = round(self._position, 6)
        self.reads.append(t)
        if t in self._fail_at:
            raise FrameCaptureError(f"No frame available at {t:.2f}s")
        return self._frame_at(t)

    def close(self) -> None:
        self.closed = True


class FakeDetector:
    """FaceDetector/PersonDetector double.

    ``detections`` is either a fixed list or a callable of the image; an
    exception instance is raised instead of returned.
    """

    def __init__(self, detections=None) -> None:
        self._detections = detections if detections is not None else []
        self.calls = 0

    async def detect(self, image: np.ndarray) -> list[RawDetection]:
        self.calls += 1
        result = self._detections(image) if callable(self._detections) else self._detections
        if isinstance(result, Exception):
            raise result
        return list(result)


def box(
    area_ratio: float,
    confidence: float,
    label: str = "face",
    image_size: tuple[int, int] = (320, 240),
) -> RawDetection:
    """A square-ish detection covering *area_ratio* of an image of *image_size*."""
    width, height = image_size
    area = area_ratio * width * height
    side = math.sqrt(area)
    return RawDetection(x=0.0, y=0.0, width=side, height=area / side, confidence=confidence, label=label)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        settle_delay_ms=0,
        seek_timeout_ms=300,
        verification_timeout_seconds=30,
        preload_models=False,
    )


@pytest.fixture
def video_blob() -> MediaBlob:
    return MediaBlob(data=b"\x1a\x45\xdf\xa3" + b"\x00" * (500 * 1024), mime_type="video/webm")


@pytest.fixture
def selfie_image() -> np.ndarray:
    return noise_image(320, 240, seed=1)


@pytest.fixture
def photo_blob(selfie_image: np.ndarray) -> MediaBlob:
    data = jpeg_bytes(selfie_image)
    assert len(data) > 1024
    return MediaBlob(data=data, mime_type="image/jpeg")


@pytest.fixture
def fake_source() -> FakeVideoSource:
    return FakeVideoSource()


@pytest.fixture
def opener(fake_source: FakeVideoSource):
    async def _open(blob: MediaBlob) -> FakeVideoSource:
        return fake_source

    return _open


# -- router fixtures ---------------------------------------------------------


@pytest.fixture
def mock_verification() -> MagicMock:
    """Create a mocked VerificationService for router tests."""
    return MagicMock(spec=VerificationService)


@pytest.fixture
def mock_task_store() -> MagicMock:
    return MagicMock(spec=TaskStore)


@pytest.fixture
def mock_judge_service() -> MagicMock:
    return MagicMock(spec=VisionJudgeService)


@pytest.fixture
def mock_challenge_generator() -> MagicMock:
    return MagicMock(spec=ChallengeGenerator)


@pytest.fixture
def mock_model_manager() -> MagicMock:
    manager = MagicMock(spec=ModelManager)
    manager.loaded_models = ["face", "person"]
    return manager


@pytest.fixture
def mock_llm() -> MagicMock:
    llm = MagicMock(spec=VisionLLMClient)
    llm.is_reachable = AsyncMock(return_value=True)
    return llm


@pytest.fixture
def test_app(
    mock_verification: MagicMock,
    mock_task_store: MagicMock,
    mock_judge_service: MagicMock,
    mock_challenge_generator: MagicMock,
    mock_model_manager: MagicMock,
    mock_llm: MagicMock,
):
    """Create a test FastAPI app with mocked dependencies."""
    from fastapi import FastAPI

    from vhp.main import vhp_error_handler
    from vhp.routers.challenge import router as challenge_router
    from vhp.routers.judge import router as judge_router
    from vhp.routers.task import router as task_router
    from vhp.routers.verification import router as verification_router

    app = FastAPI()
    app.state.verification = mock_verification
    app.state.task_store = mock_task_store
    app.state.judge_service = mock_judge_service
    app.state.challenge_generator = mock_challenge_generator
    app.state.model_manager = mock_model_manager
    app.state.llm_client = mock_llm
    app.include_router(verification_router)
    app.include_router(task_router)
    app.include_router(judge_router)
    app.include_router(challenge_router)
    app.add_exception_handler(VHPError, vhp_error_handler)
    return app


@pytest.fixture
def client(test_app) -> TestClient:
    return TestClient(test_app)
