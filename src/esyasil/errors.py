from __future__ import annotations


class EsyasilError(Exception):
    """Base class for all domain errors raised by the service."""


class ConfigurationError(EsyasilError):
    pass


class UnauthorizedError(EsyasilError):
    """Missing, malformed or invalid bearer credential."""


class InvalidBatchSizeError(EsyasilError):
    def __init__(self, size: int, max_size: int) -> None:
        super().__init__(
            f"invalid image count {size}: between 1 and {max_size} images are allowed"
        )
        self.size = size
        self.max_size = max_size


class InsufficientCreditsError(EsyasilError):
    def __init__(self, message: str = "insufficient credits") -> None:
        super().__init__(message)


class InvalidSignatureError(EsyasilError):
    """Payment webhook signature could not be verified."""


class ImageReadError(EsyasilError):
    pass


class ImageDecodeError(EsyasilError):
    pass


class DispatchError(EsyasilError):
    """Failure of a single image generation attempt."""


class GenerationFailure(DispatchError):
    """The model answered but produced no image."""


class TransportFailure(DispatchError):
    """Network, provider or timeout error while calling the model."""


class ApiError(EsyasilError):
    """Non-success response from the processing API."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"backend error {status_code}: {message}")
        self.status_code = status_code
