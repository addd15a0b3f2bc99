from django.core.cache import cache
from datetime import date as date_cls, datetime
import logging

logger = logging.getLogger(__name__)


class AvailabilityCache:
    """
    Кеш доступности лабораторий и оборудования по дням
    """

    AVAILABILITY_KEY_PREFIX = 'avail'

    # Поколение кеша ресурса: смена поколения сбрасывает все его даты разом
    GENERATION_KEY_PREFIX = 'avail_gen'

    DEFAULT_TTL = 60

    @classmethod
    def _date_str(cls, date):
        if isinstance(date, (datetime, date_cls)):
            return date.strftime('%Y-%m-%d')
        return str(date)

    @classmethod
    def get_generation_key(cls, resource_kind, resource_id):
        return f"{cls.GENERATION_KEY_PREFIX}:{resource_kind}:{resource_id}"

    @classmethod
    def get_generation(cls, resource_kind, resource_id):
        return cache.get(cls.get_generation_key(resource_kind, resource_id), 0)

    @classmethod
    def get_availability_key(cls, resource_kind, resource_id, date):
        """
        Ключ кеша доступности ресурса на дату
        :param resource_kind: 'lab' или 'equipment'
        :param resource_id: id ресурса
        :param date: дата или строка YYYY-MM-DD
        :return: строковый ключ
        """
        generation = cls.get_generation(resource_kind, resource_id)
        return (
            f"{cls.AVAILABILITY_KEY_PREFIX}:{resource_kind}:{resource_id}:"
            f"{cls._date_str(date)}:g{generation}"
        )

    @classmethod
    def set_availability(cls, resource_kind, resource_id, date, availability_data, ttl=None):
        if ttl is None:
            ttl = cls.DEFAULT_TTL

        try:
            key = cls.get_availability_key(resource_kind, resource_id, date)
            cache.set(key, availability_data, timeout=ttl)
            logger.debug(f"Кеш доступности сохранен: {key}, TTL: {ttl}с")
        except Exception as e:
            logger.error(f"Ошибка сохранения кеша доступности {resource_kind}:{resource_id}: {str(e)}")

    @classmethod
    def get_availability(cls, resource_kind, resource_id, date):
        try:
            key = cls.get_availability_key(resource_kind, resource_id, date)
            data = cache.get(key)
            if data is not None:
                logger.debug(f"Кеш доступности получен: {key}")
            return data
        except Exception as e:
            logger.error(f"Ошибка получения кеша доступности {resource_kind}:{resource_id}: {str(e)}")
            return None

    @classmethod
    def invalidate_resource_availability(cls, resource_kind, resource_id, dates=None):
        """
        Инвалидирует кеш доступности ресурса
        :param dates: конкретные даты; без них сбрасываются все даты ресурса
        """
        try:
            if dates:
                for date in dates:
                    key = cls.get_availability_key(resource_kind, resource_id, date)
                    cache.delete(key)
                    logger.debug(f"Кеш доступности инвалидирован: {key}")
                return

            generation_key = cls.get_generation_key(resource_kind, resource_id)
            cache.set(generation_key, cls.get_generation(resource_kind, resource_id) + 1, timeout=None)
            logger.debug(f"Весь кеш доступности инвалидирован для {resource_kind}:{resource_id}")
        except Exception as e:
            logger.error(f"Ошибка инвалидации кеша для {resource_kind}:{resource_id}: {str(e)}")
