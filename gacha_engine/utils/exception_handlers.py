from typing import cast

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from gacha_engine.core.exceptions import (
    DENIAL_MESSAGES,
    ConfigurationError,
    IneligibleError,
    UpstreamError,
)
from gacha_engine.schemas.common import APIResponse


def http_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    exc = cast(HTTPException, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=APIResponse(status="error", message=exc.detail).model_dump(),
    )


def validation_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    exc = cast(RequestValidationError, exc)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=APIResponse(
            status="error",
            message="Validation error",
            data=[
                {"loc": err["loc"], "msg": err["msg"], "type": err["type"]} for err in exc.errors()
            ],
        ).model_dump(),
    )


def ineligible_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    exc = cast(IneligibleError, exc)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=APIResponse(
            status="error",
            message=DENIAL_MESSAGES.get(exc.reason, str(exc)),
            data={"reason": exc.reason.value},
        ).model_dump(),
    )


def upstream_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=APIResponse(status="error", message=str(exc)).model_dump(),
    )


def configuration_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=APIResponse(status="error", message=str(exc)).model_dump(),
    )


def general_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=APIResponse(status="error", message=str(exc)).model_dump(),
    )


EXCEPTION_HANDLERS = {
    IneligibleError: ineligible_exception_handler,
    UpstreamError: upstream_exception_handler,
    ConfigurationError: configuration_exception_handler,
}
