"""Typed API errors and the JSON envelope used by every JSON endpoint.

Successful responses are ``{"data": ..., "error": null}``; failures are
``{"data": null, "error": {"code": ..., "message": ...}}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger


class ApiError(Exception):
    """Error with an HTTP status and a machine-readable code."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"ApiError({self.status_code}, {self.code!r}, {self.message!r})"


def not_found(message: str = "Not found.") -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, "NOT_FOUND", message)


def bad_request(code: str, message: str) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, code, message)


def success(data: Any, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse({"data": jsonable_encoder(data), "error": None}, status_code=status_code)


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"data": None, "error": {"code": code, "message": message}},
        status_code=status_code,
    )


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.code} - {exc.message}")
    else:
        logger.info(f"[API] {request.method} {request.url.path} rejected: {exc.status_code} {exc.code}")
    return error_response(exc.status_code, exc.code, exc.message)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request.")
    if location:
        message = f"{location}: {message}"
    logger.info(f"[API] {request.method} {request.url.path} invalid payload: {message}")
    return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", message)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
