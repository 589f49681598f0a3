"""Challenge judging: the vision judge contract, its two transports, and
the adapter that turns a raw score into a pass/fail verdict.

Score bands (fixed):
    >= 60     pass, challenge completed
    40 - 59   pass (lenient), challenge completed
    < 40      fail
The confidence reported to the pipeline is clamped into the band:
``max(60, score)`` on pass, ``min(40, score)`` on fail.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Sequence
from enum import StrEnum
from typing import Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from vhp.exceptions import JudgeError
from vhp.schemas.judge import JudgeRequest, JudgeResponse, JudgeVerdict
from vhp.services.llm import VisionLLMClient
from vhp.utils.llm_parse import parse_json_object

logger = logging.getLogger(__name__)

MAX_FRAMES = 25
DOWNSAMPLE_TARGET = 20
MIN_FRAME_BYTES = 100

PASS_SCORE = 60
LENIENT_SCORE = 40
EXCELLENT_SCORE = 80
SIMULATED_SCORE = 75

_JPEG_MAGIC = b"\xff\xd8\xff"
_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

JUDGE_SYSTEM_PROMPT = """\
You are a judge deciding whether a person really performed a short on-camera \
challenge, looking at frames sampled in order from their recording.

Score the attempt from 0 to 100:
- 0-20: nothing happens, no attempt is visible
- 20-40: the person does something unrelated to the challenge
- 40-60: basic compliance, the challenge is roughly done but without effort
- 60-80: the challenge is clearly done, with some fun or creativity
- 80-100: excellent, creative and engaged, maybe with a personal twist

Follow the progression across frames, focus on whether the challenge was \
actually completed, and reward authentic human behaviour. Be fair but \
encouraging."""

JUDGE_USER_PROMPT = """\
Challenge: "{challenge}"

The {count} images below are frames of the recording, in time order.

Reply with ONLY a JSON object:
{{
  "score": <0-100>,
  "explanation": "<2-3 sentences explaining the score>",
  "completed": <true|false>,
  "creativity": <0-10>,
  "authenticity": <0-10>
}}"""


class JudgeBand(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    NOT_COMPLETED = "not_completed"


def judge_band(score: int) -> JudgeBand:
    if score >= EXCELLENT_SCORE:
        return JudgeBand.EXCELLENT
    if score >= PASS_SCORE:
        return JudgeBand.GOOD
    if score >= LENIENT_SCORE:
        return JudgeBand.ACCEPTABLE
    return JudgeBand.NOT_COMPLETED


def decide(score: int) -> bool:
    """Pass/fail for a judge score; non-decreasing in *score*."""
    return score >= LENIENT_SCORE


def banded_confidence(score: int, passed: bool) -> int:
    return max(PASS_SCORE, score) if passed else min(LENIENT_SCORE, score)


def _clamp_int(value, low: int, high: int) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return low
    return min(max(number, low), high)


def describe_score(score: int, explanation: str) -> str:
    band = judge_band(score)
    if band == JudgeBand.EXCELLENT:
        return f"Excellent! {explanation} (Score: {score}/100 - Creative and engaging completion)"
    if band == JudgeBand.GOOD:
        return f"Good! {explanation} (Score: {score}/100 - Challenge completed successfully)"
    if band == JudgeBand.ACCEPTABLE:
        return f"Acceptable. {explanation} (Score: {score}/100 - Partial completion detected)"
    return f"Challenge not completed. {explanation} (Score: {score}/100)"


def cap_frames(frames: Sequence[str]) -> list[str]:
    """Keep at most ``MAX_FRAMES``; longer sequences are thinned to every Nth frame."""
    if len(frames) <= MAX_FRAMES:
        return list(frames)
    step = len(frames) // DOWNSAMPLE_TARGET
    return list(frames[::step])[:DOWNSAMPLE_TARGET]


def _strip_data_uri(frame: str) -> str:
    if frame.startswith("data:") and "," in frame:
        return frame.split(",", 1)[1]
    return frame


def is_valid_frame(frame: str) -> bool:
    """A frame must be base64 of a JPEG or PNG of at least ``MIN_FRAME_BYTES``."""
    try:
        raw = base64.b64decode(_strip_data_uri(frame), validate=True)
    except (binascii.Error, ValueError):
        return False
    if len(raw) < MIN_FRAME_BYTES:
        return False
    return raw.startswith(_JPEG_MAGIC) or raw.startswith(_PNG_MAGIC)


@runtime_checkable
class VisionJudge(Protocol):
    async def score(self, request: JudgeRequest) -> JudgeResponse: ...


class HttpJudgeClient:
    """Posts frames to a remote ``/ai-challenge-check`` endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def score(self, request: JudgeRequest) -> JudgeResponse:
        logger.info("Sending %d frames to judge at %s", len(request.frames), self._url)
        try:
            response = await self._client.post(
                self._url, json=request.model_dump(by_alias=True)
            )
        except httpx.HTTPError as e:
            raise JudgeError(f"AI API request failed: {e}") from e

        if response.status_code >= 400:
            raise JudgeError(
                f"AI API request failed: {response.status_code} - {response.text[:200]}"
            )
        try:
            result = JudgeResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise JudgeError(f"Invalid judge response: {e}") from e
        if not result.success:
            raise JudgeError(result.error or "AI analysis failed")
        return result

    async def close(self) -> None:
        await self._client.aclose()


class VisionJudgeService:
    """Scores challenge frames with a vision chat model."""

    def __init__(self, llm: VisionLLMClient, *, max_tokens: int | None = None) -> None:
        self._llm = llm
        self._max_tokens = max_tokens

    def build_messages(self, request: JudgeRequest) -> list[dict]:
        images = [
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:image/jpeg;base64,{_strip_data_uri(frame)}",
                    "detail": "low",
                },
            }
            for frame in request.frames
        ]
        user_text = JUDGE_USER_PROMPT.format(
            challenge=request.challenge_description, count=len(request.frames)
        )
        return [
            {"role": "system", "content": JUDGE_SYSTEM_PROMPT},
            {"role": "user", "content": [{"type": "text", "text": user_text}, *images]},
        ]

    async def score(self, request: JudgeRequest) -> JudgeResponse:
        if not request.frames:
            raise JudgeError("No frames provided for analysis")

        try:
            reply = await self._llm.chat(
                self.build_messages(request),
                max_tokens=self._max_tokens,
                json_format=True,
            )
        except httpx.HTTPError as e:
            raise JudgeError(f"Vision model request failed: {e}") from e

        try:
            data = parse_json_object(reply.content)
        except ValueError as e:
            raise JudgeError(str(e)) from e
        if "score" not in data:
            raise JudgeError("Vision model reply has no score")

        score = _clamp_int(data.get("score"), 0, 100)
        explanation = str(data.get("explanation") or "AI analysis completed")
        completed = data.get("completed")
        if not isinstance(completed, bool):
            completed = decide(score)
        frame_count = len(request.frames)
        logger.info("Judge scored challenge %d/100 over %d frames", score, frame_count)

        return JudgeResponse(
            success=True,
            score=score,
            explanation=f"{explanation} (Analysis based on {frame_count} extracted frames)",
            confidence=round(score / 100, 2),
            frames_analyzed=frame_count,
            completed=completed,
            creativity=_clamp_int(data.get("creativity"), 0, 10),
            authenticity=_clamp_int(data.get("authenticity"), 0, 10),
        )


class RemoteJudgmentAdapter:
    """Prepares frames for a ``VisionJudge`` and bands its score.

    Judge failures become a failed verdict with confidence 0. Only when
    ``allow_simulated_judge_on_failure`` is set is a fixed passing result
    (score 75) substituted instead; the flag is development-only.
    """

    def __init__(
        self, judge: VisionJudge, *, allow_simulated_judge_on_failure: bool = False
    ) -> None:
        self._judge = judge
        self._allow_simulated = allow_simulated_judge_on_failure

    def prepare_frames(self, frames: Sequence[str]) -> list[str]:
        capped = cap_frames(frames)
        if len(capped) < len(frames):
            logger.info("Downsampled %d frames to %d", len(frames), len(capped))
        valid: list[str] = []
        for i, frame in enumerate(capped):
            if is_valid_frame(frame):
                valid.append(frame)
            else:
                logger.warning("Dropping invalid frame %d (%d chars)", i + 1, len(frame))
        return valid

    async def judge(
        self, frames: Sequence[str], challenge_description: str
    ) -> JudgeVerdict:
        """Score *frames* against the challenge.

        Raises:
            JudgeError: none of the frames is a usable image.
        """
        valid = self.prepare_frames(frames)
        if not valid:
            raise JudgeError("No valid frames to analyze")

        request = JudgeRequest(
            challenge_description=challenge_description,
            frames=valid,
            frame_count=len(valid),
        )
        try:
            response = await self._judge.score(request)
        except JudgeError as e:
            logger.error("AI challenge judge failed: %s", e)
            if self._allow_simulated:
                logger.warning("Simulating judge result (development mode)")
                return self._simulated()
            return JudgeVerdict(
                passed=False,
                challenge_completed=False,
                score=0,
                confidence=0,
                explanation="AI analysis could not be completed due to technical error",
                details=f"AI verification error: {e}",
            )

        score = _clamp_int(response.score, 0, 100)
        passed = decide(score)
        explanation = response.explanation or "AI analysis completed"
        subscores = {
            key: value
            for key, value in (
                ("completed", response.completed),
                ("creativity", response.creativity),
                ("authenticity", response.authenticity),
            )
            if value is not None
        }
        return JudgeVerdict(
            passed=passed,
            challenge_completed=passed,
            score=score,
            confidence=banded_confidence(score, passed),
            ai_confidence=response.confidence,
            explanation=explanation,
            details=describe_score(score, explanation),
            frames_analyzed=response.frames_analyzed or len(valid),
            subscores=subscores,
        )

    @staticmethod
    def _simulated() -> JudgeVerdict:
        return JudgeVerdict(
            passed=True,
            challenge_completed=True,
            score=SIMULATED_SCORE,
            confidence=SIMULATED_SCORE,
            ai_confidence=SIMULATED_SCORE / 100,
            explanation="Challenge appears to be completed (simulated)",
            details="AI analysis simulated (development mode)",
            simulated=True,
        )
