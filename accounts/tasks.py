import logging

from celery import shared_task

from .otp import get_otp_service
from .sessions import get_session_store

logger = logging.getLogger(__name__)


@shared_task
def sweep_expired_sessions():
    removed = get_session_store().sweep()
    logger.info(f"Удалено просроченных сессий: {removed}")
    return removed


@shared_task
def sweep_expired_otps():
    removed = get_otp_service().sweep()
    logger.info(f"Удалено просроченных кодов: {removed}")
    return removed
