"""Error taxonomy for the generation pipeline.

Every stage raises a subclass of GenerationError. The orchestrator inspects
``kind`` and ``retryable`` to decide whether the dispatcher may schedule
another attempt.
"""

import enum


class ErrorKind(str, enum.Enum):
    """Kinds of failure a generation attempt can end with."""

    TEMPLATE_NOT_FOUND = "template_not_found"
    TEMPLATE_FILE_MISSING = "template_file_missing"
    EMPTY_INSTRUCTION = "empty_instruction"
    SOURCE_EXTRACTION_FAILURE = "source_extraction_failure"
    MISSING_CREDENTIAL = "missing_credential"
    UPSTREAM_ERROR = "upstream_error"
    EMPTY_RESPONSE = "empty_response"
    EMPTY_OUTPUT = "empty_output"
    INSUFFICIENT_ROWS = "insufficient_rows"
    TIMEOUT = "timeout"
    DISPATCH_FAILED = "dispatch_failed"
    INTERNAL_ERROR = "internal_error"


class GenerationError(Exception):
    """Base exception for generation failures.

    Attributes:
        kind: The ErrorKind classifying this failure.
        retryable: Whether a fresh attempt may succeed.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        if retryable is not None:
            self.retryable = retryable


class TemplateNotFound(GenerationError):
    """The request references a template id that does not exist."""

    kind = ErrorKind.TEMPLATE_NOT_FOUND


class TemplateFileMissing(GenerationError):
    """The template record exists but its file is gone."""

    kind = ErrorKind.TEMPLATE_FILE_MISSING


class EmptyInstruction(GenerationError):
    """The user instruction is blank."""

    kind = ErrorKind.EMPTY_INSTRUCTION


class SourceExtractionFailure(GenerationError):
    """The optional source document could not be read.

    Never fails a request; the orchestrator logs it and continues without
    reference data.
    """

    kind = ErrorKind.SOURCE_EXTRACTION_FAILURE


class MissingCredential(GenerationError):
    """The text-generation endpoint key or model is not configured."""

    kind = ErrorKind.MISSING_CREDENTIAL
    retryable = True


class UpstreamError(GenerationError):
    """The text-generation endpoint call failed after its own retries."""

    kind = ErrorKind.UPSTREAM_ERROR
    retryable = True


class EmptyResponse(GenerationError):
    """The endpoint answered but the payload carried no text."""

    kind = ErrorKind.EMPTY_RESPONSE
    retryable = True


class EmptyOutput(GenerationError):
    """The reply contained no usable content after filtering."""

    kind = ErrorKind.EMPTY_OUTPUT


class InsufficientRows(GenerationError):
    """A spreadsheet reply produced fewer rows than required."""

    kind = ErrorKind.INSUFFICIENT_ROWS


class GenerationTimeout(GenerationError):
    """An attempt exceeded the per-attempt wall-clock limit."""

    kind = ErrorKind.TIMEOUT
    retryable = True


class DispatchFailure(GenerationError):
    """The request could not be handed to the task queue."""

    kind = ErrorKind.DISPATCH_FAILED
    retryable = True
