"""Translate pipeline exceptions into HTTP responses.

Routes call services inside `with http_errors():` so each handler does not
repeat the same except-chain:

    ValidationError          422
    NotFoundError            404
    InvalidStateTransition   409  (detail names the current status)
    ConflictError            409
    InsufficientCreditsError 402
    RateLimitedError         429  + Retry-After
    TransientStorageError    503
    DownstreamFailure        502
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from studyforge.core.errors import (
    ConflictError,
    DownstreamFailure,
    InsufficientCreditsError,
    InvalidStateTransition,
    NotFoundError,
    RateLimitedError,
    TransientStorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@contextmanager
def http_errors() -> Iterator[None]:
    try:
        yield
    except ValidationError as e:
        logger.warning("Rejected request: %s", e)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    except InvalidStateTransition as e:
        logger.warning("Illegal transition: %s", e)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": str(e), "current_status": e.current_status},
        ) from None
    except ConflictError as e:
        logger.warning("Conflict: %s", e)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except InsufficientCreditsError as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"error": "Insufficient credits", "balance": e.balance},
        ) from None
    except RateLimitedError as e:
        retry_after = int(e.retry_after)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": e.message, "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        ) from None
    except TransientStorageError as e:
        logger.error("Storage unavailable: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage temporarily unavailable",
        ) from None
    except DownstreamFailure as e:
        logger.error("Downstream failure: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Upstream service failed"
        ) from None
