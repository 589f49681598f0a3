from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from vhp.config import settings
from vhp.dependencies import get_task_store
from vhp.schemas.task import TaskStatus, TaskStatusResponse, TaskSubmitResponse
from vhp.services.task_store import TaskStore
from vhp.utils.request import clean_challenge, read_media_blob

router = APIRouter(prefix="/api/v1", tags=["tasks"])


@router.post("/tasks/verify", response_model=TaskSubmitResponse, status_code=202)
async def submit_verification_task(
    video: UploadFile = File(...),
    photo: UploadFile = File(...),
    challenge: str = Form(...),
    store: TaskStore = Depends(get_task_store),
) -> TaskSubmitResponse:
    """Submit an async verification; poll GET /tasks/{task_id} for progress."""
    try:
        challenge_text = clean_challenge(challenge)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    video_blob = await read_media_blob(video, settings.max_upload_size_bytes)
    photo_blob = await read_media_blob(photo, settings.max_upload_size_bytes)
    task_id = store.submit_verification(video_blob, photo_blob, challenge_text)
    return TaskSubmitResponse(task_id=task_id, status=TaskStatus.PENDING)


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(
    task_id: str,
    store: TaskStore = Depends(get_task_store),
) -> TaskStatusResponse:
    """Query task progress and result."""
    task = store.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")

    return TaskStatusResponse(
        task_id=task.task_id,
        status=task.status,
        progress=task.progress,
        steps=task.run.steps,
        result=task.run if task.finished and task.run.finalized else None,
        token=task.token,
        error=task.error,
    )
