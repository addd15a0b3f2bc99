"""
Сессии по cookie.

Токен - 256 случайных бит в hex, никак не связан с пользователем.
Запись живёт SESSION_TTL_SECONDS; просроченная запись при чтении
ведёт себя как отсутствующая и сразу удаляется.
"""
import logging
import secrets
from datetime import datetime, timezone as dt_timezone

from django.conf import settings

from core.stores import get_store

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


class SessionData:
    """Снимок пользователя, сохранённый в сессии"""

    def __init__(self, user_id, email, role, created_at, expires_at):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.created_at = created_at
        self.expires_at = expires_at

    @classmethod
    def from_record(cls, record):
        return cls(
            user_id=record['user_id'],
            email=record['email'],
            role=record['role'],
            created_at=datetime.fromtimestamp(record['created_at'], tz=dt_timezone.utc),
            expires_at=datetime.fromtimestamp(record['expires_at'], tz=dt_timezone.utc),
        )

    def __eq__(self, other):
        if not isinstance(other, SessionData):
            return NotImplemented
        return vars(self) == vars(other)

    def __repr__(self):
        return f"<SessionData user={self.user_id} role={self.role} expires={self.expires_at.isoformat()}>"


class SessionStore:
    """
    Хранилище сессий поверх ExpiringStore.
    Сам никогда не бросает ошибок: единственный отрицательный ответ - None.
    """

    def __init__(self, store=None, ttl=None, clock=None):
        self.store = store or get_store('session')
        self.ttl = ttl or settings.SESSION_TTL_SECONDS
        self.clock = clock or self.store.clock

    def create(self, user):
        """
        Создаёт сессию для пользователя
        :return: непрозрачный токен для cookie
        """
        token = secrets.token_hex(TOKEN_BYTES)
        now = self.clock()
        record = {
            'user_id': user.pk,
            'email': user.email,
            'role': user.role,
            'created_at': now,
            'expires_at': now + self.ttl,
        }
        self.store.set(token, record, self.ttl)
        # Попутная чистка, чтобы память не росла; Redis удаляет ключи по TTL сам,
        # остальное добирает периодическая задача sweep_expired_sessions
        if not self.store.expires_natively:
            self.sweep()
        return token

    def lookup(self, token):
        if not token:
            return None
        record = self.store.get(token)
        if record is None:
            return None
        if self.clock() > record['expires_at']:
            self.store.delete(token)
            return None
        return SessionData.from_record(record)

    def delete(self, token):
        if token:
            self.store.delete(token)

    def delete_for_user(self, user_id):
        """Завершает все сессии пользователя (например после смены пароля)"""
        removed = self.store.sweep(is_stale=lambda record: record['user_id'] == user_id)
        if removed:
            logger.info(f"Завершено сессий пользователя {user_id}: {removed}")
        return removed

    def sweep(self):
        now = self.clock()
        return self.store.sweep(is_stale=lambda record: now > record['expires_at'])

    def active_count(self):
        self.sweep()
        return self.store.count()


def get_session_store():
    return SessionStore()
