"""Custom exceptions for the storefront order service."""

from typing import Optional


class StoreError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(StoreError):
    """Raised when a referenced product or order doesn't exist."""

    status_code = 404

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class InsufficientStock(StoreError):
    """Raised when a requested quantity exceeds the stock left at commit time."""

    status_code = 409

    def __init__(self, product_id: str, requested: int, name: Optional[str] = None):
        self.product_id = product_id
        self.requested = requested
        label = name or product_id
        super().__init__(f"Insufficient stock for {label}")


class InvalidInput(StoreError):
    """Raised when a required field is missing, empty or out of range."""

    status_code = 400

    def __init__(self, field: str, reason: str = "is required"):
        self.field = field
        super().__init__(f"{field} {reason}")


class InvalidStatus(StoreError):
    """Raised when an order or payment status is outside its enumeration."""

    status_code = 400

    def __init__(self, field: str, value: str, allowed: list[str]):
        self.field = field
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Invalid {field} '{value}'. Expected one of: {', '.join(allowed)}"
        )


class Forbidden(StoreError):
    """Raised when the requester may not access or mutate a resource."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class Conflict(StoreError):
    """Raised when an order identifier collides with an existing order."""

    status_code = 409

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Order id {identifier} already exists")
