import logging

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)

APP_NAME = 'Laboratory Management System'

OTP_SUBJECTS = {
    'registration': 'Complete Your Registration',
    'login': 'Login Verification Code',
    'password-reset': 'Password Reset Code',
    'verification': 'Email Verification Code',
}

OTP_INTROS = {
    'registration': 'Use the code below to complete your registration.',
    'login': 'Use the code below to sign in.',
    'password-reset': 'Use the code below to reset your password.',
    'verification': 'Use the code below to verify your email address.',
}


def send_otp(email, code, purpose='verification'):
    """
    Отправляет одноразовый код. Ошибку отправки пробрасывает вызывающему.
    """
    subject = f"{OTP_SUBJECTS.get(purpose, OTP_SUBJECTS['verification'])} - {APP_NAME}"
    minutes = settings.OTP_TTL_SECONDS // 60
    body = (
        f"{OTP_INTROS.get(purpose, OTP_INTROS['verification'])}\n\n"
        f"    {code}\n\n"
        f"The code expires in {minutes} minutes. If you did not request it, ignore this email."
    )
    try:
        send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [email])
    except Exception as e:
        logger.error(f"Ошибка отправки кода на {email}: {str(e)}")
        raise
    logger.info(f"Код ({purpose}) отправлен на {email}")


def send_welcome_email(email, name):
    """Приветственное письмо. Ошибки только логируются."""
    body = (
        f"Hello {name or email},\n\n"
        f"Your {APP_NAME} account is ready. You can now book labs and equipment."
    )
    try:
        send_mail(f"Welcome to {APP_NAME}", body, settings.DEFAULT_FROM_EMAIL, [email])
        return True
    except Exception as e:
        logger.warning(f"Не удалось отправить приветственное письмо {email}: {str(e)}")
        return False
