"""
Domain exceptions raised by the service layer.

Routers let these propagate; ``locall.exception_handlers`` maps each one to
its HTTP status.
"""

from fastapi import status


class LocallError(Exception):
    """Base class for service-layer errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(LocallError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(LocallError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(LocallError):
    status_code = status.HTTP_409_CONFLICT


class PermissionDeniedError(LocallError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidSignatureError(LocallError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str = "Invalid signature"):
        super().__init__(detail)


class UnsupportedProviderError(LocallError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, provider: str):
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider


class WebhookProcessingError(LocallError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str = "Webhook processing failed"):
        super().__init__(detail)
