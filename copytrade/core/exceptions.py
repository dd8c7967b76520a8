"""Domain errors raised by payment services and mapped to HTTP responses in main.py."""

from fastapi import status


class PaymentError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Payment operation failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class PaymentValidationError(PaymentError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class AuthorizationError(PaymentError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"


class PaymentNotFoundError(PaymentError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Payment not found"


class PaymentConflictError(PaymentError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Payment already processed"


class StorageUnavailableError(PaymentError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Proof storage is unavailable. Please try again."
