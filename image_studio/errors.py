"""Exception taxonomy for the dispatcher and the feature layer."""

from __future__ import annotations

from typing import Optional


class ImageStudioError(Exception):
    """Base class for every error raised by image_studio."""


class NoCredentialsConfiguredError(ImageStudioError):
    """No credential slot holds a value. Fatal at startup."""

    def __init__(self, slots: Optional[list[str]] = None):
        self.slots = list(slots or [])
        hint = f" (checked: {', '.join(self.slots)})" if self.slots else ""
        super().__init__(f"At least one GEMINI_API_KEY environment variable is required{hint}")


class DispatchError(ImageStudioError):
    """A dispatched call failed. Carries the feature and attempt count."""

    def __init__(self, feature: str, attempts: int, last_error: Optional[BaseException] = None,
                 reason: str = "failed"):
        self.feature = feature
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(
            f"Feature '{feature}' {reason} after {attempts} attempt(s){detail}"
        )


class CredentialsExhaustedError(DispatchError):
    """Every attempt hit a quota error, or no credential could be selected."""


class ProviderError(ImageStudioError):
    """The generative API answered with a non-success status."""

    def __init__(self, status_code: int, message: str, status: str = ""):
        self.status_code = status_code
        self.status = status
        self.message = message
        label = f" {status}" if status else ""
        super().__init__(f"{status_code}{label}: {message}")


class NoImageReturnedError(ImageStudioError):
    """The provider replied successfully but without an image part."""


class InvalidImageDataError(ImageStudioError, ValueError):
    """An input image was not a base64 data URL."""


class FeatureError(ImageStudioError):
    """User-facing failure of a feature operation; the cause is chained."""
