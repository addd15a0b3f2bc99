"""
Хранилища ключ-значение с истечением срока жизни.

На них лежат сессии и одноразовые коды. В продакшене используется Redis,
чтобы состояние переживало рестарт и было общим для всех воркеров;
InMemoryExpiringStore годится только для одного процесса и тестов.
"""
import copy
import json
import logging
import math
import threading
import time

from django.conf import settings
from django.utils.module_loading import import_string

from .lock import hold_lock
from .redis_client import redis_client

logger = logging.getLogger(__name__)


class ExpiringStore:
    """
    Интерфейс хранилища. Значения - JSON-совместимые словари.
    ttl задаёт, сколько секунд запись хранится (retention); предметные сроки
    (срок сессии, срок кода) сервисы держат внутри самого значения.
    """

    # Бэкенд сам удаляет записи по сроку хранения, периодической чистки достаточно
    expires_natively = False

    def __init__(self, namespace, clock=None):
        self.namespace = namespace
        self.clock = clock or time.time

    def set(self, key, value, ttl):
        raise NotImplementedError

    def get(self, key):
        raise NotImplementedError

    def delete(self, key):
        raise NotImplementedError

    def update(self, key, func, ttl=None):
        """
        Атомарно читает запись, передаёт её в func и сохраняет результат.
        func получает текущее значение (или None) и возвращает новое значение,
        либо None, чтобы удалить запись.
        :param ttl: новый срок хранения; по умолчанию остаётся прежний
        :return: сохранённое значение или None
        """
        raise NotImplementedError

    def sweep(self, is_stale=None):
        """
        Удаляет записи с истёкшим сроком хранения и те, для которых is_stale(value) истинно.
        :return: количество удалённых записей
        """
        raise NotImplementedError

    def count(self):
        raise NotImplementedError


class InMemoryExpiringStore(ExpiringStore):
    """Словарь в памяти процесса под re-entrant локом"""

    def __init__(self, namespace, clock=None):
        super().__init__(namespace, clock)
        self._data = {}
        self._lock = threading.RLock()

    def _live(self, key):
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() > expires_at:
            del self._data[key]
            return None
        return entry

    def set(self, key, value, ttl):
        with self._lock:
            self._data[key] = (self.clock() + ttl, copy.deepcopy(value))

    def get(self, key):
        with self._lock:
            entry = self._live(key)
            return copy.deepcopy(entry[1]) if entry else None

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)

    def update(self, key, func, ttl=None):
        with self._lock:
            entry = self._live(key)
            current = copy.deepcopy(entry[1]) if entry else None
            new_value = func(current)
            if new_value is None:
                self._data.pop(key, None)
                return None
            if ttl is not None:
                expires_at = self.clock() + ttl
            elif entry is not None:
                expires_at = entry[0]
            else:
                raise ValueError(f"ttl is required to create {self.namespace}:{key}")
            self._data[key] = (expires_at, copy.deepcopy(new_value))
            return new_value

    def sweep(self, is_stale=None):
        removed = 0
        with self._lock:
            now = self.clock()
            for key, (expires_at, value) in list(self._data.items()):
                if now > expires_at or (is_stale is not None and is_stale(value)):
                    del self._data[key]
                    removed += 1
        return removed

    def count(self):
        with self._lock:
            self.sweep()
            return len(self._data)

    def clear(self):
        with self._lock:
            self._data.clear()


class RedisExpiringStore(ExpiringStore):
    """
    Хранилище в Redis. TTL ключа совпадает со сроком хранения записи,
    обновления идут под Redis-локом на ключ.
    """

    # Время жизни лока на обновление записи (секунды)
    UPDATE_LOCK_TTL = 5
    # Сколько ждать чужой лок на обновление
    UPDATE_LOCK_WAIT = 2

    # Удаляет ключ, только если значение не изменилось с момента чтения
    DELETE_IF_UNCHANGED = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
      return redis.call("del", KEYS[1])
    else
      return 0
    end
    """

    expires_natively = True

    def __init__(self, namespace, clock=None, client=None):
        super().__init__(namespace, clock)
        self.client = client or redis_client

    def _key(self, key):
        return f"{self.namespace}:{key}"

    def _delete_if_unchanged(self, full_key, raw):
        return self.client.eval(self.DELETE_IF_UNCHANGED, 1, full_key, raw)

    def _read(self, full_key):
        raw = self.client.get(full_key)
        if raw is None:
            return None
        payload = json.loads(raw)
        if self.clock() > payload['expires_at']:
            # между чтением и удалением запись могли перезаписать
            self._delete_if_unchanged(full_key, raw)
            return None
        return payload

    def _write(self, full_key, value, expires_at):
        ttl = max(1, math.ceil(expires_at - self.clock()))
        payload = {'value': value, 'expires_at': expires_at}
        self.client.set(full_key, json.dumps(payload), ex=ttl)

    def set(self, key, value, ttl):
        self._write(self._key(key), value, self.clock() + ttl)

    def get(self, key):
        payload = self._read(self._key(key))
        return payload['value'] if payload else None

    def delete(self, key):
        self.client.delete(self._key(key))

    def update(self, key, func, ttl=None):
        full_key = self._key(key)
        with hold_lock(f"lock:{full_key}", self.UPDATE_LOCK_TTL, wait=self.UPDATE_LOCK_WAIT):
            payload = self._read(full_key)
            new_value = func(payload['value'] if payload else None)
            if new_value is None:
                self.client.delete(full_key)
                return None
            if ttl is not None:
                expires_at = self.clock() + ttl
            elif payload is not None:
                expires_at = payload['expires_at']
            else:
                raise ValueError(f"ttl is required to create {full_key}")
            self._write(full_key, new_value, expires_at)
            return new_value

    def sweep(self, is_stale=None):
        # Просроченные по TTL ключи Redis удаляет сам, здесь добираем остальные
        removed = 0
        for full_key in self.client.scan_iter(match=f"{self.namespace}:*"):
            raw = self.client.get(full_key)
            if raw is None:
                continue
            payload = json.loads(raw)
            if self.clock() > payload['expires_at'] or (is_stale is not None and is_stale(payload['value'])):
                removed += self._delete_if_unchanged(full_key, raw)
        if removed:
            logger.debug(f"Удалено просроченных записей {self.namespace}: {removed}")
        return removed

    def count(self):
        self.sweep()
        return sum(1 for _ in self.client.scan_iter(match=f"{self.namespace}:*"))


_stores = {}
_stores_lock = threading.Lock()


def get_store(namespace):
    """
    Возвращает общий для процесса экземпляр хранилища для namespace.
    Класс берётся из settings.EXPIRING_STORE_BACKEND.
    """
    with _stores_lock:
        store = _stores.get(namespace)
        if store is None:
            backend = import_string(settings.EXPIRING_STORE_BACKEND)
            store = backend(namespace)
            _stores[namespace] = store
        return store


def reset_stores():
    """Забывает созданные хранилища (нужно тестам и при смене настроек)"""
    with _stores_lock:
        _stores.clear()
