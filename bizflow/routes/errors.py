from fastapi import HTTPException
from loguru import logger
from sqlalchemy.exc import IntegrityError

from bizflow.services.workflow.errors import InvalidActionConfigError, NotFoundError


def http_error(e: Exception) -> HTTPException:
    """Map a definition-store or service error to the HTTP error returned to the UI"""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidActionConfigError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, IntegrityError):
        logger.warning(f"Integrity error on definition write: {e.orig}")
        return HTTPException(
            status_code=409,
            detail="Conflicts with an existing definition with the same name or states",
        )
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Unexpected error: {e}")
    return HTTPException(status_code=500, detail="Internal server error")
