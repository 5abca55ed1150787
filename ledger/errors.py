from typing import Optional


class LedgerServiceError(Exception):
    pass


class InvalidRequestError(LedgerServiceError):
    pass


class NotFoundError(LedgerServiceError):
    pass


class CoverNotFoundError(NotFoundError):
    pass


class PaymentNotFoundError(NotFoundError):
    pass


class InsufficientCreditError(LedgerServiceError):
    """Raised when a user has no free downloads left.

    This is an expected outcome that sends the client into the payment flow,
    not a system fault.
    """

    def __init__(self, user_id: str, free_downloads: int = 0):
        super().__init__(f"User {user_id} has no download credits left")
        self.user_id = user_id
        self.free_downloads = free_downloads


class PaymentNotCompletedError(LedgerServiceError):
    def __init__(self, reference: str, status: str):
        super().__init__(f"Payment {reference} is {status}")
        self.reference = reference
        self.status = status


class PaymentMismatchError(LedgerServiceError):
    pass


class GatewayError(LedgerServiceError):
    """Upstream service (payment gateway, image API) failed or timed out."""

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class CoverGenerationError(GatewayError):
    pass


class PersistenceError(LedgerServiceError):
    pass
