"""
Gestionnaires d'exceptions utilisés par la factory.
Les erreurs métier (StorefrontError) sont traduites en JSON {"detail", "code", ["field"]}:
- ValidationError -> 400, NotFoundError -> 404
- InvalidTransitionError, PricingInconsistencyError -> 409
- UpstreamFailure -> 502
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from storefront.errors import (
    InvalidTransitionError,
    NotFoundError,
    PricingInconsistencyError,
    StorefrontError,
    UpstreamFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)


def status_for(exc: StorefrontError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (InvalidTransitionError, PricingInconsistencyError)):
        return 409
    if isinstance(exc, UpstreamFailure):
        return 502
    return 500


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s -> %s %s", request.method, request.url.path, status_code, exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
