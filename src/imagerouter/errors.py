from __future__ import annotations

from typing import Optional, Sequence


class ImageRouterError(Exception):
    """Base exception for the imagerouter package."""


class ArgumentValidationError(ImageRouterError):
    """Raised when parsed tool arguments fail validation.

    Carries every violation, not just the first one.
    """

    def __init__(self, errors: Sequence[str], warnings: Optional[Sequence[str]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__("; ".join(self.errors) or "Invalid arguments")


class NoSuitableBackendError(ImageRouterError):
    """Raised when no available backend can serve a selection context."""

    def __init__(self, operation: str, model: Optional[str], available: Sequence[str]):
        self.operation = str(operation)
        self.model = model
        self.available = list(available)
        msg = f"No suitable providers found for operation '{self.operation}'"
        if model is not None:
            msg += f" with model '{model}'"
        msg += f". Available providers: {', '.join(self.available)}"
        super().__init__(msg)


class BackendInstantiationError(ImageRouterError):
    """Raised by a provider factory when it cannot build its provider."""


class BackendNotConfiguredError(ImageRouterError):
    """Raised when a provider lacks configuration needed to serve a call."""


class CapabilityNotSupportedError(ImageRouterError):
    """Raised when a provider is asked for an operation it does not declare."""


class BackendRequestError(ImageRouterError):
    """Raised when a backend HTTP call fails or returns an unusable payload."""
