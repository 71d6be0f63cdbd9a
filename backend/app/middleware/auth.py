from typing import Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.core.config import DEV_PROJECT_ID

EXCLUDED_PATHS = {"/health", "/ready", "/docs", "/openapi.json", "/redoc"}


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolves the caller's project from its API key."""

    def __init__(
        self,
        app,
        api_key_projects: Dict[str, str],
        dev_mode: bool = False,
    ):
        super().__init__(app)
        self.api_key_projects = dict(api_key_projects)
        self.dev_mode = dev_mode

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        # In dev mode, allow requests without auth
        if self.dev_mode and not self.api_key_projects:
            request.state.project_id = request.headers.get("X-Project-Id", DEV_PROJECT_ID)
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        api_key = None

        if auth_header.startswith("Bearer "):
            api_key = auth_header[7:].strip()
        elif "api-key" in request.headers:
            api_key = request.headers["api-key"].strip()

        project_id = self.api_key_projects.get(api_key) if api_key else None
        if project_id is None:
            return JSONResponse(
                status_code=401,
                content={"error": {"code": "authentication_error", "message": "Invalid or missing API key"}},
            )

        request.state.project_id = project_id
        return await call_next(request)
