from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status, exceptions as drf_exceptions
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').
    Subclasses pick the HTTP status the boundary layer maps them to.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "business_error"

    def __init__(self, message, code=None, errors=None):
        self.message = message
        self.code = code or self.default_code
        self.errors = errors
        super().__init__(message)


class ValidationError(BusinessLogicException):
    """Malformed or out-of-range input."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class NotFoundError(BusinessLogicException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class AuthorizationError(BusinessLogicException):
    """Caller is known but not allowed to touch this resource."""
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"


class ConflictError(BusinessLogicException):
    """
    Request is well-formed but conflicts with current state
    (insufficient stock, illegal transition, duplicate key).
    """
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class ServerError(BusinessLogicException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "server_error"


def _flatten_detail(detail):
    if isinstance(detail, list):
        return _flatten_detail(detail[0]) if detail else ""
    if isinstance(detail, dict):
        for key, value in detail.items():
            message = _flatten_detail(value)
            if key in ("detail", "non_field_errors"):
                return message
            return f"{key}: {message}"
        return ""
    return str(detail)


def custom_exception_handler(exc, context):
    """
    Maps every error to the `{success: false, message}` envelope.
    """
    if isinstance(exc, BusinessLogicException):
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.message}", exc_info=True)
        body = {"success": False, "message": exc.message, "code": exc.code}
        if exc.errors:
            body["errors"] = exc.errors
        return Response(body, status=exc.status_code)

    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"success": False, "message": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    body = {"success": False, "message": _flatten_detail(response.data)}
    if isinstance(exc, drf_exceptions.ValidationError):
        body["code"] = "validation_error"
        body["errors"] = response.data
    else:
        body["code"] = getattr(exc, "default_code", "error")
    response.data = body
    return response


# Checkout / order lifecycle

class CartEmptyError(ValidationError):
    default_code = "cart_empty"


class ProductUnavailableError(ConflictError):
    default_code = "product_unavailable"


class InsufficientStockError(ConflictError):
    default_code = "insufficient_stock"

    def __init__(self, product, requested, available):
        self.product_id = product.pk
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for \"{product.name}\". "
            f"Requested: {requested}, Available: {available}"
        )


class StockVersionConflict(ConflictError):
    """Product row changed between read and write; the caller may retry."""
    default_code = "stock_version_conflict"


class IllegalTransitionError(ConflictError):
    default_code = "illegal_transition"


# Payments

class PaymentGatewayError(BusinessLogicException):
    """Upstream gateway unreachable or answered garbage."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "payment_gateway_error"
