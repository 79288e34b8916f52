"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class RewardsError(Exception):
    """Base exception for all civic rewards errors."""

    pass


class ResourceNotFoundError(RewardsError):
    """Raised when a user, report, product or redemption doesn't exist."""

    def __init__(self, resource: str, resource_id: UUID) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class InvalidStateError(RewardsError):
    """Raised for an unknown enum value or an illegal state transition."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InsufficientPointsError(RewardsError):
    """Raised when a deduction would drive the balance below zero."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(f"insufficient points: required {required}, available {available}")


class ProductUnavailableError(RewardsError):
    """Raised when redeeming an inactive or depleted product."""

    def __init__(self, product_id: UUID) -> None:
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not available for redemption")


class OutOfStockError(RewardsError):
    """Raised when reducing stock that is already exhausted."""

    def __init__(self, product_id: UUID) -> None:
        self.product_id = product_id
        super().__init__(f"Product {product_id} is out of stock")


class ConflictError(RewardsError):
    """Raised when concurrent modification contention outlasts the retry budget."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")


class UpstreamUnavailableError(RewardsError):
    """Raised inside the AI client when the backend fails; never leaves the client."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"AI backend unavailable: {message}")


class AuthorizationError(RewardsError):
    """Raised when the actor may not perform the operation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authorization failed: {message}")


class WriteVerificationError(RewardsError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(RewardsError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class DatabaseError(RewardsError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")
