"""
DRF exception handler for the scheduling error taxonomy

Scheduling errors are rendered as:
    {"error": "SLOT_UNAVAILABLE", "detail": "...", "retryable": true}

so clients can tell "slot just got taken" (409) from "configuration
is invalid" (400/422) from "try again later" (503). Everything else
falls through to DRF's default handler.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from shared.domain import exceptions as errors

logger = logging.getLogger(__name__)


STATUS_BY_ERROR = [
    # Most specific first
    (errors.HoldNotFound, status.HTTP_404_NOT_FOUND),
    (errors.BookingNotFound, status.HTTP_404_NOT_FOUND),
    (errors.HoldExpired, status.HTTP_410_GONE),
    (errors.ConflictError, status.HTTP_409_CONFLICT),
    (errors.IncompatibleSameHuman, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (errors.EmptyBundle, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (errors.InputError, status.HTTP_400_BAD_REQUEST),
    (errors.SchedulingSystemError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: errors.SchedulingError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def scheduling_exception_handler(exc, context):
    """Render SchedulingError subclasses; delegate the rest to DRF"""
    if not isinstance(exc, errors.SchedulingError):
        return exception_handler(exc, context)

    status_code = status_for(exc)
    view = context.get('view')
    view_name = view.__class__.__name__ if view else 'unknown'

    if status_code >= 500:
        logger.error(f"{exc.code} in {view_name}: {exc.message}")
    else:
        logger.warning(f"{exc.code} in {view_name}: {exc.message}")

    payload = {
        'error': exc.code,
        'detail': exc.message,
        'retryable': exc.retryable,
    }
    response = Response(payload, status=status_code)
    if isinstance(exc, errors.SchedulingSystemError):
        response['Retry-After'] = '1'
    return response
