"""Uploaded file response schemas."""
from asset_cdn.schemas.base import CamelModel


class UploadedFile(CamelModel):
    id: str
    url: str
    direct_url: str
    filename: str
    size: int
    mime_type: str
    category: str
    hash: str


class UploadResponse(CamelModel):
    success: bool = True
    duplicate: bool = False
    file: UploadedFile
