"""
Upload Endpoints

RFQ attachments. Object storage is external: these endpoints validate
the file and hand back the key the client uploads to, or check that a
key may be deleted by the caller.
"""
import time

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from centaur.config import get_settings
from centaur.models.user import User
from centaur.schemas.upload import UploadResponse
from centaur.api.deps import get_current_user, require_member
from centaur.core.exceptions import InvalidInputError, PermissionDenied
from centaur.core.sanitize import build_storage_path, sanitize_filename, validate_storage_path, validate_upload
from centaur.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/uploads", tags=["uploads"])

CHUNK_SIZE = 64 * 1024


async def _measure(upload: UploadFile, limit: int) -> int:
    """Read at most ``limit + 1`` bytes; enough to know the file is too big."""
    size = 0
    while size <= limit:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
    return size


@router.post("/rfq", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_rfq_attachment(
    file: UploadFile = File(...),
    current_user: User = Depends(require_member),
):
    filename = file.filename or ""
    size = await _measure(file, settings.MAX_UPLOAD_BYTES)

    error = validate_upload(filename, file.content_type, size, settings.MAX_UPLOAD_BYTES)
    if error:
        raise InvalidInputError(error)

    path = build_storage_path(
        current_user.foundry_id,
        current_user.id,
        filename,
        int(time.time() * 1000),
    )
    logger.info(f"Attachment accepted: {path} ({size} bytes)", extra={"user_id": current_user.id})

    return UploadResponse(
        path=path,
        filename=sanitize_filename(filename),
        content_type=file.content_type or "application/octet-stream",
        size=size,
    )


@router.delete("/rfq", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rfq_attachment(
    path: str = Query(..., min_length=1, max_length=1024),
    current_user: User = Depends(get_current_user),
):
    """SECURITY: only keys under the caller's own prefix may be deleted."""
    if not validate_storage_path(path, current_user.foundry_id, current_user.id):
        log_security_event(
            "invalid_storage_path",
            {"user_id": current_user.id, "path": path},
            logger
        )
        raise PermissionDenied("Not authorized to delete this file")

    logger.info(f"Attachment deleted: {path}", extra={"user_id": current_user.id})
    return None
