from django.core.exceptions import PermissionDenied
from django.db import DatabaseError
from django.http import Http404
from rest_framework.views import exception_handler, set_rollback
from rest_framework.response import Response
from rest_framework import exceptions, status
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').
    Subclasses pin the HTTP status the boundary translator will answer with.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "business_error"

    def __init__(self, message, code=None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class ValidationFailure(BusinessLogicException):
    """Missing or empty required input."""
    default_code = "validation_failure"


class InsufficientStock(BusinessLogicException):
    default_code = "insufficient_stock"


class NotFound(BusinessLogicException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class InvalidTransition(BusinessLogicException):
    default_code = "invalid_transition"


class DuplicateRequest(BusinessLogicException):
    status_code = status.HTTP_409_CONFLICT
    default_code = "duplicate_request"


class StoreFailure(BusinessLogicException):
    """
    Persistence layer failed. The message is generic on purpose;
    the underlying error only goes to the logs.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "store_error"

    def __init__(self, message="Server error", code=None):
        super().__init__(message, code)


def custom_exception_handler(exc, context):
    if isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, PermissionDenied):
        exc = exceptions.PermissionDenied()

    # Business errors carry their own status and a safe message
    if isinstance(exc, BusinessLogicException):
        set_rollback()
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}", exc_info=True)
        return Response(
            {"message": exc.message, "code": exc.code},
            status=exc.status_code
        )

    if isinstance(exc, DatabaseError):
        set_rollback()
        logger.error(f"Store failure: {exc}", exc_info=True)
        return Response(
            {"message": "Server error", "code": StoreFailure.default_code},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"message": "Server error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if isinstance(exc, exceptions.ValidationError):
        response.data = {
            "message": "Missing required fields",
            "code": ValidationFailure.default_code,
            "errors": response.data,
        }
    else:
        response.data = {
            "message": str(exc.detail) if not isinstance(exc.detail, (dict, list)) else "Request failed",
            "code": exc.default_code,
        }

    return response
