"""Upload token API routes."""
from fastapi import APIRouter, Depends

from asset_cdn.container import Services
from asset_cdn.dependencies import get_services
from asset_cdn.rate_limit import rate_limited
from asset_cdn.schemas.common import ErrorResponse
from asset_cdn.schemas.token import TokenGenerateRequest, TokenGenerateResponse, TokenRestrictions

router = APIRouter(
    prefix="/v1/auth",
    tags=["auth"],
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)


@router.post(
    "/token/generate",
    response_model=TokenGenerateResponse,
    dependencies=[Depends(rate_limited("token"))],
)
async def generate_token(
    body: TokenGenerateRequest,
    services: Services = Depends(get_services),
):
    """Issue an upload token. The secret is only returned in this response."""
    result = await services.tokens.generate(
        category=body.category,
        max_file_size=body.max_file_size,
        expires_in=body.expires_in,
        created_by=body.created_by,
        metadata=body.metadata,
        max_uses=body.max_uses,
    )
    return TokenGenerateResponse(
        token=result.token,
        expires_at=result.expires_at,
        restrictions=TokenRestrictions(**result.restrictions),
    )
