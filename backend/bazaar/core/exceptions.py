"""
Application errors.

Services raise these; the handler registered in `bazaar.main` turns them
into JSON responses with the matching status code.
"""

from fastapi import Request
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    default_detail: str = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(AppError):
    status_code = 400
    default_detail = "Validation error"


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds what is available."""

    def __init__(self, product_name: str, available: int) -> None:
        self.product_name = product_name
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}"
        )


class AuthenticationError(AppError):
    status_code = 401
    default_detail = "Invalid credentials"


class PermissionDeniedError(AppError):
    status_code = 403
    default_detail = "Insufficient permissions"


class NotFoundError(AppError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_detail = "Conflict"


class PaymentGatewayError(AppError):
    status_code = 502
    default_detail = "Payment gateway error"


class EmailDeliveryError(AppError):
    status_code = 502
    default_detail = "Could not send email"


async def app_error_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return ORJSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
