from fastapi import APIRouter, Body, Depends

from vhp.dependencies import get_challenge_generator
from vhp.schemas.challenge import Challenge, ChallengeRequest
from vhp.services.challenge_generator import ChallengeGenerator

router = APIRouter(prefix="/api/v1", tags=["challenges"])


@router.post("/challenges/generate", response_model=Challenge)
async def generate_challenge(
    body: ChallengeRequest | None = Body(default=None),
    generator: ChallengeGenerator = Depends(get_challenge_generator),
) -> Challenge:
    """Generate a new challenge, avoiding the recently rejected ones."""
    history = body.challenge_history if body else []
    return await generator.generate(history)
