# безопасный Redis-lock для бронирования ресурсов и обновления записей в хранилище.

import time
import uuid
from contextlib import contextmanager

from .redis_client import redis_client


class LockNotAcquired(Exception):
    """Лок не удалось получить за отведённое время"""

    def __init__(self, key):
        super().__init__(f"Lock {key} is held by another process")
        self.key = key


# Ставит лок атомарно (SET NX EX) и возвращает уникальный токен владельца. TTL защищает от вечных локов.
def acquire_lock(key: str, ttl: int):
    token = str(uuid.uuid4())
    acquired = redis_client.set(key, token, nx=True, ex=ttl)
    return token if acquired else None


# Удаляет лок только если токен совпадает. Сравнение и удаление выполняются атомарно через Lua.
def release_lock(key: str, token: str):
    lua = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
      return redis.call("del", KEYS[1])
    else
      return 0
    end
    """
    return redis_client.eval(lua, 1, key, token)


@contextmanager
def hold_lock(key: str, ttl: int, wait: float = 0, poll_interval: float = 0.05):
    """
    Держит лок на время блока with.
    :param key: ключ лока
    :param ttl: время жизни лока в секундах
    :param wait: сколько секунд ждать освобождения чужого лока
    :raises LockNotAcquired: если лок так и не освободился
    """
    deadline = time.monotonic() + wait
    token = acquire_lock(key, ttl)
    while token is None:
        if time.monotonic() >= deadline:
            raise LockNotAcquired(key)
        time.sleep(poll_interval)
        token = acquire_lock(key, ttl)
    try:
        yield token
    finally:
        release_lock(key, token)
