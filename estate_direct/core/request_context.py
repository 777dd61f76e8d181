import logging
import uuid
from typing import Optional

from fastapi import Request

from .logging import current_request_id

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"
MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

logger = logging.getLogger(__name__)


def assign_request_id(request: Request) -> str:
    request_id = request.headers.get(REQUEST_ID_HEADER) or request.headers.get(CORRELATION_ID_HEADER)
    if not request_id:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


async def request_id_middleware(request: Request, call_next):
    """Tag the request, and every log line written while serving it, with a request id.

    Offer and transaction changes are logged with their outcome so a failed
    accept or cancel can be traced back from the client's X-Request-ID.
    """
    request_id = assign_request_id(request)
    token = current_request_id.set(request_id)
    try:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        if request.method in MUTATING_METHODS:
            logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
        return response
    finally:
        current_request_id.reset(token)
