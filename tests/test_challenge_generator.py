import random
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from vhp.exceptions import ChallengeGenerationError
from vhp.schemas.challenge import ChallengeSummary
from vhp.services.challenge_generator import (
    FALLBACK_CHALLENGES,
    ChallengeGenerator,
    format_history,
)
from vhp.services.llm import ChatResponse, VisionLLMClient


def llm_replying(content: str) -> MagicMock:
    llm = MagicMock(spec=VisionLLMClient)
    llm.chat = AsyncMock(return_value=ChatResponse(content=content, model="gpt-4o"))
    return llm


class TestChallengeGenerator:
    @pytest.mark.asyncio
    async def test_generated_challenge(self):
        llm = llm_replying(
            '{"title": "Balance a spoon", "description": "Balance a spoon on your nose '
            'for five seconds.", "reward": 7}'
        )

        challenge = await ChallengeGenerator(llm).generate()

        assert challenge.title == "Balance a spoon"
        assert challenge.reward == 7
        assert challenge.generated is True
        assert llm.chat.call_args.kwargs["temperature"] == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_history_goes_into_prompt(self):
        llm = llm_replying('{"title": "Clap", "description": "Clap three times.", "reward": 1}')
        history = [ChallengeSummary(title="Wave", description="Wave hello")]

        await ChallengeGenerator(llm).generate(history)

        system_prompt = llm.chat.call_args.args[0][0]["content"]
        assert '1. "Wave" - Wave hello' in system_prompt

    @pytest.mark.asyncio
    async def test_reward_clamped(self):
        llm = llm_replying('{"title": "Jump", "description": "Jump twice.", "reward": 42}')

        challenge = await ChallengeGenerator(llm).generate()

        assert challenge.reward == 10

    @pytest.mark.parametrize(
        "content",
        ["sorry, I can't", '{"title": "No description"}', '{"title": "", "description": "x"}'],
    )
    @pytest.mark.asyncio
    async def test_unusable_reply_falls_back(self, content):
        generator = ChallengeGenerator(llm_replying(content), rng=random.Random(0))

        challenge = await generator.generate()

        assert challenge in FALLBACK_CHALLENGES
        assert challenge.generated is False

    @pytest.mark.asyncio
    async def test_unreachable_model_raises(self):
        llm = MagicMock(spec=VisionLLMClient)
        llm.chat = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ChallengeGenerationError):
            await ChallengeGenerator(llm).generate()


class TestFormatHistory:
    def test_empty(self):
        assert format_history([]) == ""

    def test_numbered(self):
        text = format_history(
            [ChallengeSummary(title="A", description="a"), ChallengeSummary(title="B")]
        )

        assert '1. "A" - a' in text
        assert '2. "B" - ' in text
