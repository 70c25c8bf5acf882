"""Error taxonomy for the generation pipeline."""


class GenerationError(Exception):
    """Base class for pipeline errors."""


class ValidationError(GenerationError):
    """Raised when batch intake or regeneration input is malformed."""


class NotFoundError(GenerationError):
    """Raised when a referenced batch, book or taxonomy entity does not exist."""


class ServiceError(GenerationError):
    """Raised on transport or auth failure while calling an external service."""


class ParseError(GenerationError):
    """Raised when the model output does not match the expected shape.

    Carries the full prompt and the verbatim response so the attempt can still
    be written to the audit trail.
    """

    def __init__(self, message: str, prompt: str, raw_response: str) -> None:
        super().__init__(message)
        self.prompt = prompt
        self.raw_response = raw_response


class CriticalBatchError(GenerationError):
    """Raised when a failure outside the per-book loop stops a whole batch."""


class InvalidTransitionError(GenerationError):
    """Raised when a batch or stage status change would move backwards."""
