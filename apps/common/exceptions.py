import logging

from rest_framework import status
from rest_framework.exceptions import APIException, NotFound
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class InvalidStateError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The operation is not allowed in the current state."
    default_code = "invalid_state"


class NotFoundError(NotFound):
    default_detail = "Resource not found."
    default_code = "not_found"


class ConcurrencyConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The record is being modified by another request. Retry the operation."
    default_code = "concurrency_conflict"
    retryable = True


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(response.data, dict):
        detail = response.data.get("detail", "Request failed")
        fields = {k: v for k, v in response.data.items() if k != "detail"}
    else:
        detail = "Request failed"
        fields = {}

    if isinstance(exc, ConcurrencyConflict):
        view = context.get("view")
        logger.warning("Concurrency conflict in %s: %s", view.__class__.__name__ if view else "-", detail)

    response.data = {
        "code": getattr(exc, "default_code", "error"),
        "detail": detail,
        "fields": fields,
        "retryable": getattr(exc, "retryable", False),
    }
    return response
