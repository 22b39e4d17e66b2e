"""Translate manager exceptions into HTTP errors."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from taskflow.server.errors import AccessDeniedError, ConflictError, InvalidRequestError, NotFoundError


@contextmanager
def domain_errors() -> Iterator[None]:
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from None
    except ConflictError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from None
    except InvalidRequestError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    except AccessDeniedError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail={"message": str(exc), "code": exc.code}) from None
