"""Security middleware: anti-crawl and cache headers for the back-office API."""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Responses under these paths carry customer or staff data
NO_STORE_PREFIXES = ("/orders", "/auth", "/bookings", "/ad-spend")


class SecurityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        response.headers["X-Robots-Tag"] = "noindex, nofollow"
        response.headers["X-Content-Type-Options"] = "nosniff"

        path = request.url.path
        if any(path == prefix or path.startswith(prefix + "/") for prefix in NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        elif "application/json" in response.headers.get("content-type", ""):
            response.headers["Cache-Control"] = "private, no-cache"

        return response
