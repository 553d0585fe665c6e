from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)


class GenerationError(Exception):
    """A page that failed for good (retries exhausted or unrecoverable)."""

    def __init__(self, page_id: str, model_id: str | None, attempts: int, cause: Exception):
        self.page_id = page_id
        self.model_id = model_id
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Generation for page {page_id} failed after {attempts} attempt(s) "
            f"on {model_id or 'no model'}: {cause}"
        )


def is_rate_limit_error(e: Exception) -> bool:
    """Checks if the exception is an upstream rate limit error."""
    return isinstance(e, RateLimitError)


def is_server_error(e: Exception) -> bool:
    """Checks if the exception is a temporary server-side error."""
    return isinstance(
        e, (ServiceUnavailableError, APIConnectionError, InternalServerError, Timeout)
    )


def is_unrecoverable_error(e: Exception) -> bool:
    """
    Checks if the exception is a non-retriable client-side error.
    These are errors that will not resolve on their own.
    """
    return isinstance(e, (BadRequestError, AuthenticationError))
