"""Failure taxonomy shared by adapters, the orchestrator and the manager."""


class RuntimeFailure(Exception):
    """Base class for every failure raised by the conversation runtime."""

    kind = "underlying"
    default_message = "Model runtime failure"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class ModelNotLoadedError(RuntimeFailure):
    """A stream was requested before any model was loaded."""

    kind = "not_loaded"
    default_message = "No model is loaded"


class ModelFileMissingError(RuntimeFailure):
    """The model source is missing, empty or too small to be a real model."""

    kind = "file_missing"
    default_message = "Model files are missing or incomplete"


class GenerationCancelled(RuntimeFailure):
    """Cancellation was observed between two token deliveries."""

    kind = "cancelled"
    default_message = "Generation was cancelled"


class BackendError(RuntimeFailure):
    """Native backend failure, message surfaced verbatim."""

    kind = "underlying"


class UnsupportedBackendError(BackendError):
    """An adapter was asked to load a model meant for the other backend."""
