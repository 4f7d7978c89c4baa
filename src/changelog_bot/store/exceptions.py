"""Key-value store exceptions."""


class StoreError(Exception):
    """Base exception for key-value store failures."""

    def __init__(self, message: str, operation: str | None = None):
        """Initialize store error.

        Args:
            message: Error message
            operation: Store operation that failed
        """
        super().__init__(message)
        self.operation = operation


class StoreConnectionError(StoreError):
    """Raised when the store cannot be reached or times out."""

    pass
