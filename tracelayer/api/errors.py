"""Translate engine errors into HTTP errors."""

from fastapi import HTTPException

from tracelayer.core.errors import (
    ConcurrentRunError,
    ExtractionNotConfiguredError,
    NotFoundError,
    StageTransitionError,
    StoreInvariantError,
)
from tracelayer.core.logging import get_logger

logger = get_logger(__name__)

STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (ConcurrentRunError, 409),
    (StageTransitionError, 409),
    (NotFoundError, 404),
    (StoreInvariantError, 422),
    (ExtractionNotConfiguredError, 503),
)


def to_http_exception(error: Exception, action: str) -> HTTPException:
    """
    Map an exception raised while ``action`` to an HTTPException.

    Known engine errors keep their message; anything else is logged with its
    traceback and returned as a 500.
    """
    if isinstance(error, HTTPException):
        return error

    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))

    logger.error(f"Error {action}: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=str(error))
