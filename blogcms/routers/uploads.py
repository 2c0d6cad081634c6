from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from blogcms import storage
from blogcms.config import settings
from blogcms.dependencies import get_current_user
from blogcms.schemas import UploadResponse

router = APIRouter(prefix="/api/v1/uploads", tags=["uploads"])


@router.post("", response_model=UploadResponse, dependencies=[Depends(get_current_user)])
async def upload_image(
    file: UploadFile = File(...),
    kind: str = Form(..., alias="type"),
):
    if kind not in storage.UPLOAD_KINDS:
        raise HTTPException(status_code=400, detail="Invalid upload type")
    if file.content_type not in storage.ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Only JPEG, PNG, WebP, and GIF are allowed",
        )

    data = await file.read(settings.MAX_UPLOAD_SIZE + 1)
    if len(data) > settings.MAX_UPLOAD_SIZE:
        limit_mb = settings.MAX_UPLOAD_SIZE // (1024 * 1024)
        raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {limit_mb}MB")

    url, filename = await storage.save_upload(kind, file.filename or "upload", data)
    return UploadResponse(success=True, url=url, filename=filename)
