"""
Жизненный цикл одноразовых кодов (OTP).

На один email хранится одна запись: новая отправка перезаписывает прежнюю
независимо от назначения. Код принимается, пока now <= expires_at и число
неудачных попыток меньше OTP_MAX_ATTEMPTS.
"""
import logging
import math
import secrets

from django.conf import settings

from core.exceptions import (
    AttemptsExceeded, DeliveryFailed, Expired, InvalidCode, InvalidInput, NotFound, RateLimited,
)
from core.lock import LockNotAcquired
from core.stores import get_store

from . import mail

logger = logging.getLogger(__name__)

PURPOSES = ('registration', 'login', 'password-reset', 'verification')


def generate_code(length):
    """Равномерно по всему диапазону, с ведущими нулями: '004821' - нормальный код"""
    return str(secrets.randbelow(10 ** length)).zfill(length)


def normalize_email(email):
    email = str(email or '').strip().lower()
    if not email:
        raise InvalidInput('Email is required')
    return email


class OtpService:

    def __init__(self, store=None, send_code=None, clock=None):
        self.store = store or get_store('otp')
        self.send_code = send_code
        self.clock = clock or self.store.clock
        self.length = settings.OTP_LENGTH
        self.ttl = settings.OTP_TTL_SECONDS
        self.resend_cooldown = settings.OTP_RESEND_COOLDOWN_SECONDS
        self.max_attempts = settings.OTP_MAX_ATTEMPTS
        self.verified_window = settings.OTP_VERIFIED_WINDOW_SECONDS

    @property
    def retention(self):
        # Запись держим дольше срока кода: просроченный код должен давать Expired,
        # а подтверждённый - дожить до конца окна подтверждения
        return self.ttl + self.verified_window

    def _update(self, email, func, ttl=None):
        try:
            return self.store.update(email, func, ttl=ttl)
        except LockNotAcquired:
            logger.warning(f"Запись кода для {email} занята параллельным запросом")
            raise RateLimited('Another request for this email is in progress, please retry', retry_after=1)

    def send(self, email, purpose='verification'):
        """
        Генерирует и отправляет новый код.
        :return: {'email': ..., 'expires_in_seconds': ...}
        :raises RateLimited: предыдущий код выдан меньше OTP_RESEND_COOLDOWN_SECONDS назад
        :raises DeliveryFailed: письмо не ушло; запись при этом удаляется
        """
        email = normalize_email(email)
        if purpose not in PURPOSES:
            raise InvalidInput(f"Unknown OTP purpose: {purpose}")

        code = generate_code(self.length)

        def issue(current):
            now = self.clock()
            if current is not None and now <= current['expires_at']:
                remaining = current['expires_at'] - now
                if remaining > self.ttl - self.resend_cooldown:
                    wait = math.ceil(remaining - (self.ttl - self.resend_cooldown))
                    raise RateLimited(
                        f"Please wait {wait} seconds before requesting a new OTP",
                        retry_after=wait,
                    )
            return {
                'code': code,
                'purpose': purpose,
                'expires_at': now + self.ttl,
                'attempts': 0,
                'verified': False,
                'verified_at': None,
            }

        self._update(email, issue, ttl=self.retention)

        try:
            (self.send_code or mail.send_otp)(email, code, purpose)
        except Exception as e:
            # Откатываем только свою запись, чужую успевшую перезаписать не трогаем
            try:
                self.store.update(email, lambda current: None if current and current['code'] == code else current)
            except LockNotAcquired:
                logger.warning(f"Не удалось удалить недоставленный код для {email}, он истечёт сам")
            logger.error(f"Код для {email} не доставлен, запись удалена: {str(e)}")
            raise DeliveryFailed()

        logger.info(f"Выдан код ({purpose}) для {email}")
        return {'email': email, 'expires_in_seconds': self.ttl}

    def resend(self, email, purpose='verification'):
        return self.send(email, purpose)

    def verify(self, email, code):
        """
        Проверяет код.
        :return: {'verified': True, 'email', 'purpose', 'verified_at'}
        :raises NotFound, Expired, AttemptsExceeded, InvalidCode
        """
        email = normalize_email(email)
        candidate = str(code if code is not None else '').strip()
        outcome = {}

        def check(current):
            if current is None:
                raise NotFound('No OTP found. Please request a new one')
            now = self.clock()
            if now > current['expires_at']:
                outcome['error'] = Expired()
                return None
            if current['attempts'] >= self.max_attempts:
                outcome['error'] = AttemptsExceeded()
                return None
            if str(current['code']).strip() != candidate:
                current['attempts'] += 1
                remaining = self.max_attempts - current['attempts']
                outcome['error'] = InvalidCode(
                    f"Invalid OTP. {remaining} attempts remaining.",
                    attempts_remaining=remaining,
                )
                return current
            current['verified'] = True
            current['verified_at'] = now
            current['attempts'] = 0
            return current

        record = self._update(email, check)
        if 'error' in outcome:
            logger.info(f"Проверка кода для {email} не пройдена: {outcome['error'].code}")
            raise outcome['error']

        return {
            'verified': True,
            'email': email,
            'purpose': record['purpose'],
            'verified_at': record['verified_at'],
        }

    def consume_verified(self, email, purpose=None):
        """
        Забирает подтверждённую запись для следующего шага (регистрация, вход, смена пароля).
        Запись удаляется.
        """
        email = normalize_email(email)
        outcome = {}

        def consume(current):
            if current is None:
                outcome['error'] = NotFound('OTP session not found. Please start the process again.')
                return None
            if not current['verified']:
                outcome['error'] = InvalidInput('Email verification required. Please verify your OTP first.')
                return current
            if purpose is not None and current['purpose'] != purpose:
                outcome['error'] = InvalidInput('OTP was issued for a different purpose.')
                return current
            if self.clock() - current['verified_at'] > self.verified_window:
                outcome['error'] = Expired('Email verification has expired. Please start the process again.')
                return None
            outcome['record'] = current
            return None

        self._update(email, consume)
        if 'error' in outcome:
            raise outcome['error']
        return outcome['record']

    def clear(self, email):
        self.store.delete(normalize_email(email))

    def status(self, email):
        email = normalize_email(email)
        record = self.store.get(email)
        now = self.clock()
        has_otp = record is not None
        is_expired = not has_otp or now > record['expires_at']
        time_remaining = 0 if is_expired else math.ceil(record['expires_at'] - now)
        return {
            'has_otp': has_otp,
            'is_expired': is_expired,
            'time_remaining': time_remaining,
            'can_request_new': is_expired or time_remaining <= self.ttl - self.resend_cooldown,
        }

    def sweep(self):
        now = self.clock()

        def is_stale(record):
            if record['verified']:
                return now - record['verified_at'] > self.verified_window
            return now > record['expires_at']

        return self.store.sweep(is_stale=is_stale)


def get_otp_service():
    return OtpService()
