"""FastAPI dependencies: services from app.state and upload token auth."""
import logging

from fastapi import Header, Request

from asset_cdn.container import Services
from asset_cdn.errors import CDNError, ErrorCode
from asset_cdn.models.upload_token import USAGE_REJECTED, UploadToken
from asset_cdn.rate_limit import get_client_ip
from asset_cdn.services.token_store import mask_token

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def require_upload_token(
    request: Request,
    x_upload_token: str | None = Header(default=None),
) -> UploadToken:
    """Resolve X-Upload-Token to a usable token or fail with a 401."""
    if not x_upload_token:
        raise CDNError(ErrorCode.AUTH_TOKEN_MISSING)

    services = get_services(request)
    result = await services.tokens.validate(x_upload_token.strip())
    if not result.valid:
        logger.info(f"Rejected upload token {mask_token(x_upload_token)}: {result.reason}")
        if result.token is not None:
            await services.tokens.log_usage(
                result.token.id,
                USAGE_REJECTED,
                ip_address=get_client_ip(request),
                user_agent=request.headers.get("user-agent"),
                error_message=result.reason,
            )
        raise CDNError(result.code or ErrorCode.AUTH_TOKEN_INVALID, details=[result.reason])
    return result.token
