"""Upload and public download routes."""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import FileResponse, Response

from asset_cdn.container import Services
from asset_cdn.dependencies import get_services, require_upload_token
from asset_cdn.errors import CDNError, ErrorCode
from asset_cdn.models.upload_token import UploadToken
from asset_cdn.rate_limit import get_client_ip, rate_limited
from asset_cdn.schemas.common import ErrorResponse
from asset_cdn.schemas.file import UploadedFile, UploadResponse
from asset_cdn.services.image_processor import DEFAULT_QUALITY, TransformOptions
from asset_cdn.services.upload_pipeline import DUPLICATE

router = APIRouter(
    prefix="/v1",
    tags=["cdn"],
    responses={status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 429)},
)

UPLOAD_CHUNK_SIZE = 64 * 1024


async def iter_upload(file: UploadFile, chunk_size: int = UPLOAD_CHUNK_SIZE):
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        yield chunk


@router.post(
    "/upload",
    response_model=UploadResponse,
    dependencies=[Depends(rate_limited("upload"))],
)
async def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(default=None),
    token: UploadToken = Depends(require_upload_token),
    services: Services = Depends(get_services),
):
    """Upload one file (multipart field `file`) using an X-Upload-Token."""
    if file is None or not file.filename:
        raise CDNError(ErrorCode.FILE_NOT_PROVIDED)

    try:
        outcome = await services.uploads.run(
            iter_upload(file),
            file.filename,
            file.content_type,
            token,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    finally:
        await file.close()

    if not outcome.ok:
        raise CDNError(outcome.error, details=outcome.reasons)

    record = outcome.file
    return UploadResponse(
        duplicate=outcome.kind == DUPLICATE,
        file=UploadedFile(
            id=str(record.id),
            url=f"/v1/files/{record.id}",
            direct_url=f"/v1/files/{record.stored_filename}",
            filename=record.filename,
            size=record.file_size,
            mime_type=record.mime_type,
            category=record.category,
            hash=record.hash_sha256,
        ),
    )


@router.get("/files/{identifier}")
async def download_file(
    identifier: str,
    w: Optional[int] = Query(default=None, ge=1, le=4096),
    h: Optional[int] = Query(default=None, ge=1, le=4096),
    q: Optional[int] = Query(default=None, ge=1, le=100),
    format: Optional[Literal["webp", "jpeg", "png", "avif"]] = Query(default=None),
    services: Services = Depends(get_services),
):
    """Serve a file by record id or stored filename, optionally resized/re-encoded."""
    options = TransformOptions(width=w, height=h, quality=q or DEFAULT_QUALITY, format=format)
    result = await services.downloads.fetch(identifier, options)

    if result.content is not None:
        return Response(content=result.content, media_type=result.media_type, headers=result.headers)
    return FileResponse(
        result.path,
        media_type=result.media_type,
        headers=result.headers,
        filename=result.record.filename,
        content_disposition_type="inline",
    )
