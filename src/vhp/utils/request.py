"""Request parsing helpers."""

from fastapi import HTTPException, UploadFile

from vhp.services.media import MediaBlob


async def read_media_blob(upload: UploadFile, max_bytes: int) -> MediaBlob:
    """Read an uploaded file into a MediaBlob.

    The declared content type is kept as-is; the verification steps decide
    whether it is acceptable.

    Raises:
        HTTPException: 413 when the upload exceeds *max_bytes*.
    """
    data = await upload.read()
    if len(data) > max_bytes:
        raise HTTPException(status_code=413, detail="File too large")
    return MediaBlob(data=data, mime_type=upload.content_type or "")


def clean_challenge(challenge: str) -> str:
    """Strip the challenge text; raises ValueError when nothing is left."""
    text = challenge.strip()
    if not text:
        raise ValueError("Challenge description is required")
    return text
