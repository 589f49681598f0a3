from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeVideoSource
from vhp.exceptions import JudgeError
from vhp.schemas.detection import BoundingBox, DetectionResult, VideoDetectionResult
from vhp.schemas.judge import JudgeVerdict
from vhp.schemas.verification import PipelineRun
from vhp.services.frame_sampler import FrameSampler
from vhp.services.human_detector import HumanPresenceClassifier
from vhp.services.judge import RemoteJudgmentAdapter
from vhp.services.media import MediaBlob
from vhp.services.pipeline.base import VerificationContext
from vhp.services.pipeline.steps import (
    AIChallengeCheckStep,
    BasicFileCheckStep,
    HumanSelfieCheckStep,
    HumanVideoCheckStep,
)
from vhp.services.video_scanner import VideoHumanScanner


@pytest.fixture
def ctx(video_blob, photo_blob) -> VerificationContext:
    return VerificationContext(
        video=video_blob,
        photo=photo_blob,
        challenge_description="Wave at the camera with both hands",
        run=PipelineRun(run_id="test", steps=[]),
    )


def face_detection(width: float, height: float, confidence: float = 0.9, count: int = 1) -> DetectionResult:
    boxes = [BoundingBox(x=0, y=0, width=width, height=height, confidence=confidence)]
    return DetectionResult(
        has_human=True,
        confidence=confidence,
        detection_count=count,
        bounding_boxes=boxes,
        source="face",
        details=f"{count} valid face(s) detected",
    )


def stub_classifier(result: DetectionResult) -> MagicMock:
    clf = MagicMock(spec=HumanPresenceClassifier)
    clf.classify = AsyncMock(return_value=result)
    return clf


class TestBasicFileCheck:
    @pytest.mark.asyncio
    async def test_valid_files(self, ctx):
        progress = []
        step = BasicFileCheckStep()

        result = await step.execute(ctx, lambda pct, msg: progress.append(pct))

        assert result.passed is True
        assert result.confidence == 100
        assert result.details == "All files validated successfully"
        assert progress == [10, 50, 90, 100]

    @pytest.mark.asyncio
    async def test_repeatable(self, ctx):
        step = BasicFileCheckStep()

        first = await step.execute(ctx)
        second = await step.execute(ctx)

        assert first == second

    @pytest.mark.asyncio
    async def test_reports_every_failure(self, ctx):
        ctx.video = MediaBlob(data=b"x" * 2048, mime_type="text/plain")
        ctx.photo = MediaBlob(data=b"x" * 100, mime_type="image/jpeg")

        result = await BasicFileCheckStep().execute(ctx)

        assert result.passed is False
        assert result.confidence == 0
        assert result.details == (
            "Invalid video format - not a video file | Photo file too small (less than 1KB)"
        )
        assert result.extras == {"video_valid": False, "photo_valid": False}

    @pytest.mark.asyncio
    async def test_oversized_video(self, ctx):
        step = BasicFileCheckStep(video_max_bytes=100 * 1024)

        result = await step.execute(ctx)

        assert result.passed is False
        assert result.details.startswith("Video file too large")


class TestHumanVideoCheck:
    @staticmethod
    def make_step(source: FakeVideoSource, detection: VideoDetectionResult | None = None):
        scanner = MagicMock(spec=VideoHumanScanner)
        scanner.scan_video = AsyncMock(
            return_value=detection or VideoDetectionResult(has_human=False, details="none")
        )

        async def opener(blob):
            return source

        return HumanVideoCheckStep(scanner, opener), scanner

    @pytest.mark.asyncio
    async def test_early_stop_suffix(self, ctx):
        detection = VideoDetectionResult(
            has_human=True,
            confidence=0.9,
            max_confidence=0.8,
            detection_count=2,
            frames_checked=2,
            longest_streak=2,
            stopped_early=True,
            details="Human detected in 2 of 2 frames (90% confidence)",
        )
        source = FakeVideoSource()
        step, _ = self.make_step(source, detection)

        result = await step.execute(ctx)

        assert result.passed is True
        assert result.confidence == 90
        assert result.details.endswith(
            "(analysis stopped early - clear human presence detected)"
        )
        assert ctx.video_detection is detection
        assert source.closed

    @pytest.mark.asyncio
    async def test_no_human(self, ctx):
        detection = VideoDetectionResult(
            has_human=False, frames_checked=50, details="No human detected in 50 frames analyzed"
        )
        step, _ = self.make_step(FakeVideoSource(), detection)

        result = await step.execute(ctx)

        assert result.passed is False
        assert result.confidence == 0
        assert result.details == "No human detected in 50 frames analyzed"

    @pytest.mark.asyncio
    async def test_low_resolution_rejected(self, ctx):
        source = FakeVideoSource(width=80, height=60)
        step, scanner = self.make_step(source)

        result = await step.execute(ctx)

        assert result.passed is False
        assert result.details == "Human detection error: Video resolution too low (minimum 100x100)"
        scanner.scan_video.assert_not_awaited()
        assert source.closed

    @pytest.mark.asyncio
    async def test_invalid_video_type(self, ctx):
        ctx.video = MediaBlob(data=b"x" * 4096, mime_type="image/png")
        step, _ = self.make_step(FakeVideoSource())

        result = await step.execute(ctx)

        assert result.passed is False
        assert result.details.startswith("Human detection error: Invalid video format")


class TestHumanSelfieCheck:
    @pytest.mark.asyncio
    async def test_face_at_exact_minimum_size_passes(self, ctx):
        # 32x48 on the 320x240 selfie is exactly 2% of the image
        step = HumanSelfieCheckStep(stub_classifier(face_detection(32, 48)))

        result = await step.execute(ctx)

        assert result.passed is True
        assert result.confidence == 90
        assert result.details == "Human face detected (90% confidence), face covers 2.0% of image"
        assert ctx.selfie_face_ratio == pytest.approx(0.02)

    @pytest.mark.asyncio
    async def test_face_just_below_minimum_fails(self, ctx):
        step = HumanSelfieCheckStep(stub_classifier(face_detection(30, 50)))

        result = await step.execute(ctx)

        assert result.passed is False
        assert result.confidence == 0
        assert result.details.startswith("Face detected but too small for selfie verification")

    @pytest.mark.asyncio
    async def test_low_confidence_message(self, ctx):
        step = HumanSelfieCheckStep(stub_classifier(face_detection(100, 100, confidence=0.5)))

        result = await step.execute(ctx)

        assert result.passed is False
        assert result.details == "Face detected but confidence too low (50% < 60%)"

    @pytest.mark.asyncio
    async def test_face_count_reported(self, ctx):
        step = HumanSelfieCheckStep(stub_classifier(face_detection(80, 80, count=2)))

        result = await step.execute(ctx)

        assert result.passed is True
        assert result.details.endswith("2 faces total")

    @pytest.mark.asyncio
    async def test_no_face_uses_detector_details(self, ctx):
        detection = DetectionResult(has_human=False, details="No faces detected in image", source="face")
        step = HumanSelfieCheckStep(stub_classifier(detection))

        result = await step.execute(ctx)

        assert result.passed is False
        assert result.details == "No faces detected in image"

    @pytest.mark.asyncio
    async def test_undecodable_photo(self, ctx):
        ctx.photo = MediaBlob(data=b"\x00" * 4096, mime_type="image/jpeg")
        clf = stub_classifier(face_detection(80, 80))

        result = await HumanSelfieCheckStep(clf).execute(ctx)

        assert result.passed is False
        assert result.details.startswith("Face detection error: Failed to load image")
        clf.classify.assert_not_awaited()


class TestAIChallengeCheck:
    @staticmethod
    def make_step(adapter, source: FakeVideoSource | None = None):
        source = source or FakeVideoSource()

        async def opener(blob):
            return source

        return AIChallengeCheckStep(FrameSampler(settle_delay_ms=0), adapter, opener)

    @pytest.mark.asyncio
    async def test_verdict_becomes_step_result(self, ctx):
        adapter = MagicMock(spec=RemoteJudgmentAdapter)
        adapter.judge = AsyncMock(
            return_value=JudgeVerdict(
                passed=True,
                challenge_completed=True,
                score=72,
                confidence=72,
                ai_confidence=0.72,
                explanation="Waved.",
                details="Good! Waved. (Score: 72/100 - Challenge completed successfully)",
                frames_analyzed=15,
            )
        )
        progress = []

        result = await self.make_step(adapter).execute(ctx, lambda pct, msg: progress.append(pct))

        assert result.passed is True
        assert result.confidence == 72
        assert result.extras["score"] == 72
        assert result.extras["simulated"] is False
        frames, challenge = adapter.judge.call_args.args
        assert len(frames) == 15
        assert challenge == ctx.challenge_description
        assert progress == [5, 10, 15, 55, 65, 90, 100]
        assert ctx.judge_verdict.score == 72

    @pytest.mark.asyncio
    async def test_judge_error_fails_step(self, ctx):
        adapter = MagicMock(spec=RemoteJudgmentAdapter)
        adapter.judge = AsyncMock(side_effect=JudgeError("No valid frames to analyze"))

        result = await self.make_step(adapter).execute(ctx)

        assert result.passed is False
        assert result.confidence == 0
        assert result.details == "AI verification error: No valid frames to analyze"

    @pytest.mark.asyncio
    async def test_no_frames_extracted(self, ctx):
        adapter = MagicMock(spec=RemoteJudgmentAdapter)
        adapter.judge = AsyncMock()
        every_offset = {round(i / 3, 6) for i in range(20)}
        source = FakeVideoSource(fail_at=every_offset)

        result = await self.make_step(adapter, source).execute(ctx)

        assert result.passed is False
        assert "No frames could be extracted" in result.details
        adapter.judge.assert_not_awaited()
