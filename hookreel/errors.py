"""
Error taxonomy for the generation pipeline.

Recoverable errors (ExternalServiceError) are absorbed by the transcription and
classification fallbacks. Everything else that reaches the orchestrator fails
the job with a single `error` status event.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(PipelineError):
    """Missing or invalid input (e.g. no narration text). Never retried."""


class ExternalServiceError(PipelineError):
    """Transport failure, non-2xx or malformed payload from STT / classification."""


class ToolInvocationError(PipelineError):
    """An external tool process (ffmpeg) exited non-zero."""

    def __init__(self, message: str, returncode: int = 1, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class AudioToolError(ToolInvocationError):
    """The audio transform engine failed."""


class PersistenceError(PipelineError):
    """Upload to object storage failed."""


class CleanupError(PipelineError):
    """A temporary file could not be removed. Logged, never raised to callers."""


class EmptyPoolError(PipelineError):
    """No usable background clips in the requested pool."""


class RenderTimeoutError(PipelineError):
    """The render collaborator did not finish within the configured bound."""


class InvalidStageTransition(PipelineError):
    """A GenerationJob was asked to move to a stage that does not follow its current one."""
