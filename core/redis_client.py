import redis
from django.conf import settings

# Общий клиент Redis: локи бронирования и хранилище сессий и кодов.
# Подключение ленивое, соединение открывается при первой команде.
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True, health_check_interval=30)
