from __future__ import annotations

import logging
from contextlib import contextmanager

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from services.errors import ForbiddenError, NotFoundError, PersistenceError, SyncValidationError
from services.schemas import validation_details

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "1"


@contextmanager
def service_errors():
    """Translate service exceptions raised inside the block into HTTP errors."""
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc) or "Not found")
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc) or "Not authorized")
    except SyncValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Validation failed", "details": exc.details},
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "Validation failed", "details": validation_details(exc)},
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc) or "Storage unavailable, retry the request",
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
    except SQLAlchemyError:
        logger.error("Storage error while handling request", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage unavailable, retry the request",
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
