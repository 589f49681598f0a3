import time

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from vhp.config import settings
from vhp.dependencies import (
    get_llm_client,
    get_model_manager,
    get_verification,
)
from vhp.schemas.verification import HealthResponse, VerifyResponse
from vhp.services.llm import VisionLLMClient
from vhp.services.model_manager import ModelManager
from vhp.services.pipeline import VerificationService
from vhp.utils.request import clean_challenge, read_media_blob
from vhp.utils.token import issue_vhp_token

router = APIRouter(prefix="/api/v1", tags=["verification"])


@router.post("/verify", response_model=VerifyResponse)
async def verify(
    video: UploadFile = File(...),
    photo: UploadFile = File(...),
    challenge: str = Form(...),
    verification: VerificationService = Depends(get_verification),
) -> VerifyResponse:
    """Run the full verification pipeline; a token is issued only on pass."""
    try:
        challenge_text = clean_challenge(challenge)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    video_blob = await read_media_blob(video, settings.max_upload_size_bytes)
    photo_blob = await read_media_blob(photo, settings.max_upload_size_bytes)

    start = time.perf_counter()
    run = await verification.run_full_verification(video_blob, photo_blob, challenge_text)
    elapsed_ms = (time.perf_counter() - start) * 1000

    return VerifyResponse(
        run=run,
        token=issue_vhp_token() if run.passed else None,
        processing_time_ms=round(elapsed_ms, 2),
    )


@router.get("/health", response_model=HealthResponse)
async def health(
    manager: ModelManager = Depends(get_model_manager),
    llm: VisionLLMClient = Depends(get_llm_client),
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        models_loaded=manager.loaded_models,
        llm_reachable=await llm.is_reachable(),
        judge_mode=settings.judge_mode,
    )
