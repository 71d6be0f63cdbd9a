from fastapi import Request
from fastapi.responses import JSONResponse


class UsageCostError(Exception):
    """Base exception for all service errors."""
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthenticationError(UsageCostError):
    status_code = 401
    error_code = "authentication_error"


class InvalidRequestError(UsageCostError):
    status_code = 400
    error_code = "invalid_request"


class ModelDefinitionNotFoundError(UsageCostError):
    status_code = 404
    error_code = "model_not_found"


class GenerationNotFoundError(UsageCostError):
    status_code = 404
    error_code = "generation_not_found"


class ForbiddenOperationError(UsageCostError):
    status_code = 403
    error_code = "forbidden"


class QueueUnavailableError(UsageCostError):
    status_code = 503
    error_code = "queue_unavailable"


class QueueConfigurationError(UsageCostError):
    """Redis is reachable but configured in a way that can lose queued jobs."""
    status_code = 500
    error_code = "queue_misconfigured"


class TokenizerError(UsageCostError):
    error_code = "tokenizer_error"

    def __init__(self, message: str, tokenizer_id: str):
        self.tokenizer_id = tokenizer_id
        super().__init__(message)


async def usage_cost_exception_handler(
    request: Request, exc: UsageCostError
) -> JSONResponse:
    content = {
        "error": {
            "code": exc.error_code,
            "message": exc.message,
            "type": type(exc).__name__,
        }
    }
    return JSONResponse(status_code=exc.status_code, content=content)
