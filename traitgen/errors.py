from typing import Optional


class GenerationError(Exception):
    """Base class for every error raised by the generation engine."""


class ConfigurationError(GenerationError):
    """Invalid request shape. Raised before any generation work starts."""


class EmptyLayerError(ConfigurationError):
    def __init__(self, layer_name: str) -> None:
        super().__init__(f"Layer {layer_name!r} must have at least one trait")
        self.layer_name = layer_name


class ResourceNotFound(GenerationError, LookupError):
    """A trait source file could not be resolved or decoded."""

    def __init__(self, layer_path: str, filename: str, reason: Optional[str] = None) -> None:
        message = f"Trait file not found: {layer_path}/{filename}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.layer_path = layer_path
        self.filename = filename


class UniquenessExhaustedError(GenerationError):
    def __init__(self, produced: int, requested: int, attempts: int) -> None:
        super().__init__(
            f"Could only generate {produced} unique assets out of {requested} requested "
            f"after {attempts} attempts"
        )
        self.produced = produced
        self.requested = requested
        self.attempts = attempts


class RenderBackendError(GenerationError):
    """A compositing backend failed. Handled inside the compositor's fallback chain."""

    def __init__(self, backend: str, message: str) -> None:
        super().__init__(f"[{backend}] {message}")
        self.backend = backend
