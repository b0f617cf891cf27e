"""Translate domain errors into HTTP responses."""

import logging

from fastapi import HTTPException

from ..errors import (
    CrmError,
    InvalidContactError,
    InvalidTransitionError,
    NoColumnError,
    NoPipelineError,
    NotFoundError,
)
from .db_helpers import is_supabase_not_configured_error, is_transient_db_error

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (NoPipelineError, 404),
    (NoColumnError, 404),
    (InvalidContactError, 400),
    (InvalidTransitionError, 409),
)


def to_http_exception(exc: Exception, *, op_name: str) -> HTTPException:
    """Map an exception raised by a service call to an ``HTTPException``."""
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, CrmError):
        for error_type, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                return HTTPException(status_code=status_code, detail=exc.message)
        return HTTPException(status_code=400, detail=exc.message)
    if is_supabase_not_configured_error(exc) or is_transient_db_error(exc):
        return HTTPException(status_code=503, detail="Banco de dados indisponível.")
    logger.error(f"Error in {op_name}: {exc}")
    return HTTPException(status_code=500, detail="Erro interno. Tente novamente.")
