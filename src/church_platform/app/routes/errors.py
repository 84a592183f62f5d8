"""Translate service-layer domain errors into HTTP responses."""

from fastapi import HTTPException, status

from church_platform.domain.errors import (
    DomainError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)


def http_error(exc: DomainError) -> HTTPException:
    """404 for missing records, 403 for denied access, 400 naming the bad field."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, UnauthorizedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, InvalidInputError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"field": exc.field, "message": exc.message},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
