"""Rate limiting dependency for FastAPI routes.

Routes that create jobs declare their quota by operation name:

    @router.post("/v1/submissions",
                 dependencies=[Depends(require_rate_limit("assignment"))])

Course and study-content creation enforce their own quotas inside the
service (the quota is part of the operation, not of the route), so this
dependency is for the remaining routes: assignment submission and the
general per-user budget.

The key is the authenticated user's email when a bearer token is present,
else the client IP.  The token is read without verification; a forged sub
only gets its own bucket, and require_user does the real check.

X-RateLimit-* headers are attached to every response by
RequestContextMiddleware from request.state.
"""

from __future__ import annotations

import logging

import jwt as pyjwt
from fastapi import HTTPException, Request, status

from studyforge.services.rate_limiter import RateLimitResult

logger = logging.getLogger(__name__)


def require_rate_limit(operation: str = "general"):
    """Dependency factory: enforce the named quota on a route."""

    async def _check(request: Request) -> None:
        identity = rate_limit_identity(request)
        limiter = request.app.state.pipeline.rate_limiter
        result: RateLimitResult = await limiter.check(identity, operation)

        request.state.rate_limit_headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
        }

        if result.limited:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": result.message or "Rate limit exceeded",
                    "retry_after": result.retry_after,
                },
                headers={
                    "Retry-After": str(result.retry_after),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return _check


def rate_limit_identity(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            claims = pyjwt.decode(auth_header[7:], options={"verify_signature": False})
        except pyjwt.InvalidTokenError:
            claims = {}
        sub = claims.get("sub")
        if sub:
            return f"user:{str(sub).strip().lower()}"

    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"
