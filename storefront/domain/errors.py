"""Error taxonomy for the storefront service.

Each error carries the HTTP status the API layer maps it to.
"""
from typing import Optional


class StorefrontError(Exception):
    status_code = 500
    detail = "Internal error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.detail)
        self.detail = detail or self.detail


class Unauthenticated(StorefrontError):
    status_code = 401
    detail = "Unauthorized"


class Forbidden(StorefrontError):
    status_code = 403
    detail = "Forbidden"


class InvalidSignature(StorefrontError):
    status_code = 400
    detail = "Invalid signature"


class MissingOrderReference(StorefrontError):
    status_code = 400
    detail = "No order ID found"


class OrderNotFound(StorefrontError):
    status_code = 404
    detail = "Order not found"


class GatewayVerificationFailed(StorefrontError):
    status_code = 400
    detail = "Payment verification failed"


class GatewayUnavailable(StorefrontError):
    status_code = 502
    detail = "Payment gateway unavailable"


class UpdateFailed(StorefrontError):
    status_code = 500
    detail = "Failed to update order"

    def __init__(self, cause: Exception):
        super().__init__(f"Failed to update order: {cause}")
        self.cause = cause


class RateLimited(StorefrontError):
    status_code = 429
    detail = "Too many attempts, try again later"

    def __init__(self, retry_after: float):
        super().__init__()
        self.retry_after = retry_after
