from __future__ import annotations

from typing import Any


class PipelineError(RuntimeError):
    pass


class ValidationError(PipelineError):
    pass


class TransportError(PipelineError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class GenerationFailedError(TransportError):
    def __init__(self, code: str | None, message: str | None) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.remote_message = message


class ContinuationError(PipelineError):
    pass


class InitializationError(PipelineError):
    pass


class IndexBuildTimeoutError(InitializationError):
    pass


class NoMessageError(PipelineError):
    pass


class MalformedResponseError(PipelineError):
    pass


class UnrecoverableParseError(MalformedResponseError):
    def __init__(self, message: str, *, text: str) -> None:
        super().__init__(message)
        self.text = text


class ScriptGenerationError(PipelineError):
    pass


class SynthesisError(PipelineError):
    pass


class AudioProcessingError(PipelineError):
    pass


class PipelineCancelled(PipelineError):
    pass


class ResourceLeakWarning(UserWarning):
    pass


_CONNECTION_HINTS = (
    "connection",
    "timed out",
    "timeout",
    "reset by peer",
    "broken pipe",
    "temporarily unavailable",
)


def is_retryable_error(error: BaseException) -> bool:
    if isinstance(error, (PipelineCancelled, GenerationFailedError)):
        return False
    status: Any = getattr(error, "status", None)
    if isinstance(status, int):
        return status == 429 or status >= 500
    # No status means the request never got a response.
    if isinstance(error, (TransportError, ConnectionError, TimeoutError)):
        return True
    text = str(error).lower()
    return any(hint in text for hint in _CONNECTION_HINTS)
