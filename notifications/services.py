import json
import logging

from django.core.serializers.json import DjangoJSONEncoder

from .tasks import create_notification

logger = logging.getLogger(__name__)


def notify(user_id, type, title, message, metadata=None):
    """
    Ставит уведомление в очередь. Никогда не бросает исключений:
    сбой уведомления не должен ломать основную операцию.
    :return: True, если задача поставлена
    """
    try:
        # metadata уходит в брокер, поэтому даты и Decimal приводим к строкам заранее
        payload = json.loads(json.dumps(metadata or {}, cls=DjangoJSONEncoder))
        create_notification.delay(user_id, type, title, message, payload)
        return True
    except Exception as e:
        logger.warning(f"Не удалось отправить уведомление пользователю {user_id}: {str(e)}")
        return False
