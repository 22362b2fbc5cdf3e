"""Shared auth/permission error types."""


class AuthenticationError(Exception):
    """Raised when a request cannot be authenticated."""


class PermissionDeniedError(Exception):
    """Raised when a principal lacks a required capability."""

    def __init__(self, capability: str) -> None:
        self.capability = capability
        super().__init__(f"Capability '{capability}' denied")
