import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class LabError(Exception):
    """
    Базовая ошибка бизнес-логики.
    Каждый подкласс задаёт стабильный code и HTTP-статус, дополнительные поля
    (например attempts_remaining) передаются через extra.
    """
    code = 'error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Request failed'

    def __init__(self, message=None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def as_dict(self):
        return {'error': self.message, 'code': self.code, **self.extra}


class InvalidInput(LabError):
    code = 'invalid_input'
    default_message = 'Invalid input'


class InvalidCode(LabError):
    code = 'invalid_code'
    default_message = 'Invalid OTP'


class NotFound(LabError):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found'


class PermissionDenied(LabError):
    code = 'permission_denied'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You do not have permission to perform this action'


class Conflict(LabError):
    code = 'conflict'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Time slot already booked'


class ResourceUnavailable(LabError):
    code = 'resource_unavailable'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Resource is not available'


class RateLimited(LabError):
    code = 'rate_limited'
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = 'Too many requests'


class Expired(LabError):
    code = 'expired'
    status_code = status.HTTP_410_GONE
    default_message = 'OTP has expired. Please request a new one'


class AttemptsExceeded(LabError):
    code = 'attempts_exceeded'
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = 'Too many failed attempts. Please request a new OTP'


class DeliveryFailed(LabError):
    code = 'delivery_failed'
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = 'Failed to send OTP email'


class Internal(LabError):
    code = 'internal'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Internal server error'


def api_exception_handler(exc, context):
    """
    Обработчик исключений DRF: ошибки бизнес-логики и ошибки DRF
    приводятся к одному формату {'error': ..., 'code': ...}
    """
    if isinstance(exc, LabError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        return Response(exc.as_dict(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None:
        detail = response.data
        if isinstance(detail, dict) and set(detail) == {'detail'}:
            message = str(detail['detail'])
            payload = {'error': message, 'code': getattr(detail['detail'], 'code', 'error')}
        else:
            payload = {'error': 'Validation failed', 'code': 'invalid_input', 'errors': detail}
        response.data = payload
        return response

    view = context.get('view')
    logger.exception(f"Необработанная ошибка в {view.__class__.__name__ if view else 'unknown view'}")
    return Response(Internal().as_dict(), status=status.HTTP_500_INTERNAL_SERVER_ERROR)
