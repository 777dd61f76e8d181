import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .request_context import get_request_id

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for failures a caller can recover from by re-reading state."""

    code = "DOMAIN_ERROR"
    status_code = 400
    default_message = "Request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Entity not found."


class NotAuthorized(DomainError):
    code = "NOT_AUTHORIZED"
    status_code = 403
    default_message = "Not authorized for this entity."


class InvalidTransition(DomainError):
    code = "INVALID_TRANSITION"
    status_code = 409
    default_message = "The requested state change is not allowed."


class ValidationFailed(DomainError):
    code = "VALIDATION_FAILED"
    status_code = 422
    default_message = "Validation failed."


class InvalidDateOrdering(DomainError):
    code = "INVALID_DATE_ORDERING"
    status_code = 422
    default_message = "Dates are not in a valid order."


class InvalidPrice(DomainError):
    code = "INVALID_PRICE"
    status_code = 422
    default_message = "Price or deposit amount is invalid."


class OfferExpired(DomainError):
    code = "OFFER_EXPIRED"
    status_code = 409
    default_message = "Offer has expired."


class ConditionAlreadyResolved(DomainError):
    code = "CONDITION_ALREADY_RESOLVED"
    status_code = 409
    default_message = "Condition has already been resolved."


class ListingNoLongerActive(DomainError):
    code = "LISTING_NO_LONGER_ACTIVE"
    status_code = 409
    default_message = "Listing is no longer active."


class UnknownJurisdiction(DomainError):
    code = "UNKNOWN_JURISDICTION"
    status_code = 422
    default_message = "Unknown province code."


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "code": exc.code,
                "detail": exc.message,
                "path": str(request.url),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=422,
            content={
                "code": "VALIDATION_FAILED",
                "detail": "Validation failed.",
                "errors": jsonable_errors(exc),
                "path": str(request.url),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore[override]
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "detail": "Internal server error.",
                "path": str(request.url),
                "request_id": get_request_id(request),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload: Dict[str, Any] = {"code": "HTTP_ERROR", "detail": exc.detail or "HTTP error.", "path": str(request.url)}
        if exc.headers:
            payload["headers"] = exc.headers
        return JSONResponse(status_code=exc.status_code, content=payload)


def jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic may put the raw exception object under "ctx"; keep only printable fields.
    cleaned = []
    for error in exc.errors():
        cleaned.append({key: (str(value) if key == "ctx" else value) for key, value in error.items()})
    return cleaned
