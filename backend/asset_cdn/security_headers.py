"""Browser hardening headers for every response."""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds baseline hardening headers.

    Assets are meant to be embedded by other origins, so resources are marked
    cross-origin. The CSP stops a served SVG or HTML-ish document from running
    scripts when opened directly.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Cross-Origin-Resource-Policy", "cross-origin")
        response.headers.setdefault(
            "Content-Security-Policy",
            "; ".join(["default-src 'none'", "style-src 'unsafe-inline'", "frame-ancestors 'none'", "sandbox"]),
        )

        proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "").lower()
        if proto == "https":
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")

        return response
