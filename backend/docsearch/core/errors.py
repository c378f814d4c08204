"""Exception hierarchy for the embedding and retrieval subsystem.

Classes:
    EmbeddingError: Base class for everything raised by the embedding pipeline.
    ChannelTimeoutError: A call received no terminal response in time.
    ChannelDisposedError: A pending call was cancelled because its channel was disposed.
    RemoteExecutionError: The execution unit reported a failure for a request.
    ModelLoadError: The model pipeline could not materialise the requested model.
    WorkerAlreadyRunningError: A second live execution unit was requested.
    DimensionMismatchError: A vector does not have the configured dimensionality.
    EmptyBatchError: A batch embedding call received no texts.
"""

from __future__ import annotations


class EmbeddingError(Exception):
    """Base exception for the embedding subsystem."""


class ChannelTimeoutError(EmbeddingError):
    def __init__(self, request_type: str, request_id: str, timeout: float) -> None:
        super().__init__(f"{request_type} request {request_id} timed out after {timeout:.1f}s")
        self.request_type = request_type
        self.request_id = request_id
        self.timeout = timeout


class ChannelDisposedError(EmbeddingError):
    def __init__(self, request_id: str | None = None) -> None:
        message = "Execution channel disposed"
        if request_id:
            message = f"{message} before request {request_id} completed"
        super().__init__(message)
        self.request_id = request_id


class RemoteExecutionError(EmbeddingError):
    """
    Error reported by the execution unit in a terminal response.

    `name` carries the remote exception class name when one was provided.
    """

    def __init__(self, message: str, name: str | None = None) -> None:
        super().__init__(message)
        self.name = name


class ModelLoadError(EmbeddingError):
    def __init__(self, model_id: str, device: str, reason: str) -> None:
        super().__init__(f"Failed to load {model_id} on {device}: {reason}")
        self.model_id = model_id
        self.device = device
        self.reason = reason


class WorkerAlreadyRunningError(EmbeddingError):
    pass


class DimensionMismatchError(EmbeddingError, ValueError):
    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"Invalid embedding dimension. Expected {expected}, received {received}.")
        self.expected = expected
        self.received = received


class EmptyBatchError(EmbeddingError, ValueError):
    def __init__(self) -> None:
        super().__init__("texts must be a non-empty list")
