"""Upload token request/response schemas."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from asset_cdn.schemas.base import CamelModel

TokenCategory = Literal["image", "video", "document", "audio", "archive", "other", "any"]


class TokenGenerateRequest(CamelModel):
    category: TokenCategory = "any"
    max_file_size: Optional[int] = Field(default=None, gt=0)
    expires_in: Optional[int] = Field(default=None, ge=60, le=2592000)  # 1 minute .. 30 days
    created_by: Optional[str] = Field(default=None, max_length=100)
    metadata: Optional[dict] = None
    max_uses: int = Field(default=1, ge=1, le=1000)


class TokenRestrictions(CamelModel):
    category: str
    max_file_size: Optional[int] = None
    max_uses: int


class TokenGenerateResponse(CamelModel):
    success: bool = True
    token: str
    expires_at: Optional[datetime] = None
    restrictions: TokenRestrictions
