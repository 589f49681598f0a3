import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from vhp.dependencies import get_judge_service
from vhp.exceptions import JudgeError
from vhp.schemas.judge import JudgeRequest, JudgeResponse
from vhp.services.judge import VisionJudgeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["judge"])


@router.post("/ai-challenge-check", response_model=JudgeResponse)
async def ai_challenge_check(
    body: JudgeRequest,
    judge: VisionJudgeService = Depends(get_judge_service),
):
    """Score challenge frames with the vision model."""
    try:
        return await judge.score(body)
    except JudgeError as e:
        logger.error("AI challenge check failed: %s", e)
        failure = JudgeResponse(
            success=False,
            explanation=f"AI evaluation failed: {e}",
            error=str(e),
        )
        return JSONResponse(status_code=500, content=failure.model_dump(by_alias=True))
