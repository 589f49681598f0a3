"""Challenge generation through the chat model, with a fixed fallback list."""

import logging
import random

import httpx
from pydantic import ValidationError

from vhp.exceptions import ChallengeGenerationError
from vhp.schemas.challenge import Challenge, ChallengeSummary
from vhp.services.llm import VisionLLMClient
from vhp.utils.llm_parse import parse_json_object

logger = logging.getLogger(__name__)

CHALLENGE_SYSTEM_PROMPT = """\
You generate challenges for a human verification system. The user records \
a 30 second video with their phone camera right where they are.

Requirements:
- doable right now, indoors, with no special objects and no going outside
- safe and appropriate for everyone
- completable in under 30 seconds, on video (not a selfie)
- fun and varied; avoid dance moves and other repetitive patterns

Examples: "Show your hands", "Give us a tour of your workspace", "Show \
something you drink", "Do a pushup", "Try balancing an ice cube on your nose".
{history}
Respond ONLY with a JSON object:
{{
  "title": "<short title, max 50 chars>",
  "description": "<concise description, 100-150 chars>",
  "reward": <1-10, 1 for smile and wave, 10 for something really hard>
}}"""

FALLBACK_CHALLENGES: tuple[Challenge, ...] = (
    Challenge(
        title="Show us your best dance move",
        description="Bust out a quick dance move on camera. Let loose and have fun!",
        reward=8,
        generated=False,
    ),
    Challenge(
        title="Strike a silly pose",
        description="Quickly strike the silliest pose you can and hold it for a few seconds.",
        reward=4,
        generated=False,
    ),
    Challenge(
        title="Make a funny face",
        description="Show us your goofiest facial expression and hold it for the camera.",
        reward=3,
        generated=False,
    ),
    Challenge(
        title="Show your workspace",
        description="Give us a quick tour of where you're sitting or working right now.",
        reward=2,
        generated=False,
    ),
)


def format_history(history: list[ChallengeSummary]) -> str:
    if not history:
        return ""
    lines = [
        "",
        "The user rejected these recent challenges, create something completely different:",
    ]
    lines += [f'{i}. "{c.title}" - {c.description}' for i, c in enumerate(history, 1)]
    return "\n".join(lines) + "\n"


class ChallengeGenerator:
    def __init__(
        self,
        llm: VisionLLMClient,
        *,
        temperature: float = 0.9,
        max_tokens: int = 200,
        rng: random.Random | None = None,
    ) -> None:
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._rng = rng or random.Random()

    def fallback(self) -> Challenge:
        return self._rng.choice(FALLBACK_CHALLENGES)

    async def generate(self, history: list[ChallengeSummary] | None = None) -> Challenge:
        """Ask the model for a new challenge.

        Unusable model output falls back to a fixed challenge.

        Raises:
            ChallengeGenerationError: the model could not be reached.
        """
        messages = [
            {
                "role": "system",
                "content": CHALLENGE_SYSTEM_PROMPT.format(history=format_history(history or [])),
            },
            {"role": "user", "content": "Generate a random human verification challenge"},
        ]
        try:
            reply = await self._llm.chat(
                messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                json_format=True,
            )
        except httpx.HTTPError as e:
            raise ChallengeGenerationError(f"Failed to generate challenge: {e}") from e

        try:
            data = parse_json_object(reply.content)
            reward = min(max(int(float(data.get("reward") or 1)), 1), 10)
            challenge = Challenge(
                title=str(data["title"]).strip(),
                description=str(data["description"]).strip(),
                reward=reward,
            )
            if not challenge.title or not challenge.description:
                raise ValueError("empty title or description")
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning("Unusable challenge from model (%s), using fallback", e)
            return self.fallback()

        logger.info("Generated challenge %r (reward %d)", challenge.title, challenge.reward)
        return challenge
