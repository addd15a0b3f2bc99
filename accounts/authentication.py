import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from rest_framework import authentication, exceptions

from .sessions import get_session_store

logger = logging.getLogger(__name__)

User = get_user_model()


def get_session_token(request):
    token = request.COOKIES.get(settings.SESSION_COOKIE_NAME_LAB)
    if not token or token in ('null', 'undefined'):
        return None
    return token


class SessionTokenAuthentication(authentication.BaseAuthentication):
    """
    Аутентификация по токену сессии из cookie.
    Сессию пользователя, которого удалили или деактивировали, сразу удаляем.
    """

    def authenticate(self, request):
        token = get_session_token(request)
        if token is None:
            return None

        store = get_session_store()
        session = store.lookup(token)
        if session is None:
            raise exceptions.AuthenticationFailed('Access denied. Invalid or expired session.')

        user = User.objects.filter(pk=session.user_id).first()
        if user is None:
            store.delete(token)
            logger.info(f"Сессия удалена: пользователь {session.user_id} не найден")
            raise exceptions.AuthenticationFailed('Access denied. User not found.')
        if not user.is_active:
            store.delete(token)
            logger.info(f"Сессия удалена: пользователь {user.email} деактивирован")
            raise exceptions.AuthenticationFailed('Access denied. Account is inactive.')

        return user, session

    def authenticate_header(self, request):
        return 'Session'
