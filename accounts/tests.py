from unittest import mock

import fakeredis
from django.contrib.auth import get_user_model
from django.core import mail as django_mail
from django.test import SimpleTestCase, TestCase

from core.exceptions import AttemptsExceeded, DeliveryFailed, Expired, InvalidCode, InvalidInput, NotFound, RateLimited
from core.lock import hold_lock
from core.stores import InMemoryExpiringStore, RedisExpiringStore

from .otp import OtpService, generate_code
from .sessions import SessionData, SessionStore

User = get_user_model()


class FakeClock:
    """Управляемые часы для проверки сроков"""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class SessionStoreTestCase(TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.sessions = SessionStore(store=InMemoryExpiringStore('session', clock=self.clock), ttl=86400)
        self.user = User.objects.create_user(email='Student@Example.com', password='testpass123', name='Student')

    def test_create_and_lookup(self):
        """Тест: валидный токен возвращает данные сессии"""
        token = self.sessions.create(self.user)
        self.assertEqual(len(token), 64)

        session = self.sessions.lookup(token)
        self.assertIsInstance(session, SessionData)
        self.assertEqual(session.user_id, self.user.pk)
        self.assertEqual(session.email, 'student@example.com')
        self.assertEqual(session.role, 'student')
        self.assertEqual((session.expires_at - session.created_at).total_seconds(), 86400)
        self.assertEqual(self.sessions.lookup(token), session)

    def test_lookup_unknown_token(self):
        """Тест: никогда не выданный токен"""
        self.assertIsNone(self.sessions.lookup('deadbeef'))
        self.assertIsNone(self.sessions.lookup(''))
        self.assertIsNone(self.sessions.lookup(None))

    def test_lookup_deleted_token(self):
        """Тест: удалённый токен"""
        token = self.sessions.create(self.user)
        self.sessions.delete(token)
        self.assertIsNone(self.sessions.lookup(token))
        # повторное удаление ничего не ломает
        self.sessions.delete(token)

    def test_lookup_expired_token(self):
        """Тест: просроченный токен удаляется при чтении"""
        token = self.sessions.create(self.user)
        self.clock.advance(86400)
        self.assertIsNotNone(self.sessions.lookup(token))

        self.clock.advance(1)
        self.assertIsNone(self.sessions.lookup(token))
        self.assertEqual(self.sessions.active_count(), 0)

    def test_tokens_are_unique(self):
        """Тест: каждая сессия получает свой токен"""
        tokens = {self.sessions.create(self.user) for _ in range(20)}
        self.assertEqual(len(tokens), 20)
        self.assertEqual(self.sessions.active_count(), 20)

    def test_delete_for_user(self):
        """Тест: завершение всех сессий пользователя"""
        other = User.objects.create_user(email='other@example.com', password='testpass123')
        mine = [self.sessions.create(self.user) for _ in range(3)]
        theirs = self.sessions.create(other)

        self.assertEqual(self.sessions.delete_for_user(self.user.pk), 3)
        for token in mine:
            self.assertIsNone(self.sessions.lookup(token))
        self.assertIsNotNone(self.sessions.lookup(theirs))

    def test_sweep_removes_only_expired(self):
        """Тест: чистка просроченных сессий"""
        old = self.sessions.create(self.user)
        self.clock.advance(50000)
        fresh = self.sessions.create(self.user)
        self.clock.advance(40000)

        self.sessions.sweep()
        self.assertIsNone(self.sessions.lookup(old))
        self.assertIsNotNone(self.sessions.lookup(fresh))


class InterleavingRedis(fakeredis.FakeRedis):
    """Выполняет after_get один раз сразу после очередного GET"""

    after_get = None

    def get(self, name):
        value = super().get(name)
        hook, self.after_get = self.after_get, None
        if hook is not None:
            hook()
        return value


class RedisSessionStoreTestCase(TestCase):
    """Сессии поверх Redis (fakeredis из conftest)"""

    def setUp(self):
        self.clock = FakeClock()
        self.store = RedisExpiringStore('session', clock=self.clock)
        self.sessions = SessionStore(store=self.store, ttl=86400)
        self.user = User.objects.create_user(email='student@example.com', password='testpass123')
        self.other = User.objects.create_user(email='other@example.com', password='testpass123')

    def test_create_does_not_scan(self):
        """Тест: вход не перебирает все сессии, Redis удаляет их по TTL"""
        with mock.patch.object(self.store, 'sweep') as sweep:
            token = self.sessions.create(self.user)
        sweep.assert_not_called()
        self.assertEqual(self.sessions.lookup(token).user_id, self.user.pk)

    def test_delete_for_user(self):
        mine = [self.sessions.create(self.user) for _ in range(2)]
        theirs = self.sessions.create(self.other)

        self.assertEqual(self.sessions.delete_for_user(self.user.pk), 2)
        for token in mine:
            self.assertIsNone(self.sessions.lookup(token))
        self.assertIsNotNone(self.sessions.lookup(theirs))

    def test_sweep_removes_only_expired(self):
        old = self.sessions.create(self.user)
        self.clock.advance(50000)
        fresh = self.sessions.create(self.user)
        self.clock.advance(40000)

        self.assertEqual(self.sessions.sweep(), 1)
        self.assertIsNone(self.sessions.lookup(old))
        self.assertIsNotNone(self.sessions.lookup(fresh))
        self.assertEqual(self.sessions.active_count(), 1)


class OtpServiceTestCase(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.store = InMemoryExpiringStore('otp', clock=self.clock)
        self.sent = []
        self.otp = OtpService(store=self.store, send_code=self._send, clock=self.clock)

    def _send(self, email, code, purpose):
        self.sent.append((email, code, purpose))

    @property
    def last_code(self):
        return self.sent[-1][1]

    def test_send_resend_cooldown(self):
        """Тест: send -> мгновенный resend запрещён -> через 61с разрешён"""
        result = self.otp.send('a@b.com', 'registration')
        self.assertEqual(result, {'email': 'a@b.com', 'expires_in_seconds': 600})

        with self.assertRaises(RateLimited) as ctx:
            self.otp.resend('a@b.com', 'registration')
        self.assertEqual(ctx.exception.extra['retry_after'], 60)

        self.clock.advance(61)
        self.assertEqual(self.otp.resend('a@b.com', 'registration')['expires_in_seconds'], 600)
        self.assertEqual(len(self.sent), 2)

    def test_verify_correct_code(self):
        """Тест: правильный код подтверждается"""
        self.otp.send('user@example.com', 'login')
        result = self.otp.verify('USER@example.com ', self.last_code)
        self.assertTrue(result['verified'])
        self.assertEqual(result['purpose'], 'login')

    def test_attempt_ceiling(self):
        """Тест: после 5 неверных попыток даже верный код отклоняется"""
        self.otp.send('user@example.com')
        code = self.last_code
        wrong = '000000' if code != '000000' else '111111'

        for remaining in range(4, -1, -1):
            with self.assertRaises(InvalidCode) as ctx:
                self.otp.verify('user@example.com', wrong)
            self.assertEqual(ctx.exception.extra['attempts_remaining'], remaining)

        with self.assertRaises(AttemptsExceeded):
            self.otp.verify('user@example.com', code)

    def test_expiry_boundary_is_inclusive(self):
        """Тест: код принимается ровно в момент истечения"""
        self.otp.send('user@example.com')
        self.clock.advance(600)
        self.assertTrue(self.otp.verify('user@example.com', self.last_code)['verified'])

    def test_expired_code(self):
        """Тест: просроченный код даёт Expired, а не NotFound"""
        self.otp.send('user@example.com')
        self.clock.advance(601)
        with self.assertRaises(Expired):
            self.otp.verify('user@example.com', self.last_code)
        with self.assertRaises(NotFound):
            self.otp.verify('user@example.com', self.last_code)

    def test_verify_without_code(self):
        """Тест: проверка без выданного кода"""
        with self.assertRaises(NotFound):
            self.otp.verify('nobody@example.com', '123456')

    def test_code_with_leading_zeros(self):
        """Тест: код с ведущими нулями сравнивается как строка"""
        with mock.patch('accounts.otp.secrets.randbelow', return_value=4821):
            self.otp.send('user@example.com')
        self.assertEqual(self.last_code, '004821')
        self.assertTrue(self.otp.verify('user@example.com', '004821')['verified'])

    def test_generate_code_width(self):
        """Тест: код всегда из 6 цифр"""
        for _ in range(50):
            code = generate_code(6)
            self.assertEqual(len(code), 6)
            self.assertTrue(code.isdigit())

    def test_delivery_failure_leaves_no_record(self):
        """Тест: если письмо не ушло, кода нет"""
        otp = OtpService(store=self.store, send_code=mock.Mock(side_effect=OSError('smtp down')), clock=self.clock)
        with self.assertRaises(DeliveryFailed):
            otp.send('user@example.com')
        self.assertFalse(otp.status('user@example.com')['has_otp'])
        # и повторная отправка не упирается в задержку
        self.otp.send('user@example.com')

    def test_new_send_replaces_previous_purpose(self):
        """Тест: на email одна запись, новая отправка перезаписывает старую"""
        self.otp.send('user@example.com', 'registration')
        first = self.last_code
        self.clock.advance(61)
        self.otp.send('user@example.com', 'password-reset')

        if first != self.last_code:
            with self.assertRaises(InvalidCode):
                self.otp.verify('user@example.com', first)

        result = self.otp.verify('user@example.com', self.last_code)
        self.assertEqual(result['purpose'], 'password-reset')

    def test_consume_verified(self):
        """Тест: подтверждённую запись можно забрать один раз"""
        self.otp.send('user@example.com', 'registration')
        with self.assertRaises(InvalidInput):
            self.otp.consume_verified('user@example.com', 'registration')

        self.otp.verify('user@example.com', self.last_code)
        with self.assertRaises(InvalidInput):
            self.otp.consume_verified('user@example.com', 'login')

        record = self.otp.consume_verified('user@example.com', 'registration')
        self.assertEqual(record['purpose'], 'registration')
        with self.assertRaises(NotFound):
            self.otp.consume_verified('user@example.com', 'registration')

    def test_verified_window(self):
        """Тест: подтверждение действует 30 минут"""
        self.otp.send('user@example.com')
        self.otp.verify('user@example.com', self.last_code)
        self.clock.advance(1801)
        with self.assertRaises(Expired):
            self.otp.consume_verified('user@example.com')

    def test_status(self):
        """Тест: статус кода"""
        self.assertEqual(self.otp.status('user@example.com'), {
            'has_otp': False, 'is_expired': True, 'time_remaining': 0, 'can_request_new': True,
        })
        self.otp.send('user@example.com')
        self.clock.advance(30)
        status = self.otp.status('user@example.com')
        self.assertTrue(status['has_otp'])
        self.assertEqual(status['time_remaining'], 570)
        self.assertFalse(status['can_request_new'])

    def test_unknown_purpose(self):
        with self.assertRaises(InvalidInput):
            self.otp.send('user@example.com', 'newsletter')

    def test_sweep(self):
        """Тест: чистка удаляет просроченные и отработавшие записи"""
        self.otp.send('old@example.com')
        self.clock.advance(601)
        self.otp.send('new@example.com')
        self.assertEqual(self.otp.sweep(), 1)
        self.assertTrue(self.otp.status('new@example.com')['has_otp'])


class RedisOtpStoreTestCase(SimpleTestCase):
    """Те же сценарии поверх Redis (fakeredis из conftest)"""

    def setUp(self):
        self.clock = FakeClock()
        self.store = RedisExpiringStore('otp', clock=self.clock)
        self.sent = []
        self.otp = OtpService(
            store=self.store, send_code=lambda email, code, purpose: self.sent.append(code), clock=self.clock,
        )

    def test_attempts_are_persisted(self):
        """Тест: счётчик попыток хранится в Redis"""
        self.otp.send('user@example.com')
        code = self.sent[-1]
        wrong = '000000' if code != '000000' else '111111'
        for _ in range(5):
            with self.assertRaises(InvalidCode):
                self.otp.verify('user@example.com', wrong)
        with self.assertRaises(AttemptsExceeded):
            self.otp.verify('user@example.com', code)

    def test_resend_cooldown(self):
        self.otp.send('a@b.com', 'registration')
        with self.assertRaises(RateLimited):
            self.otp.resend('a@b.com', 'registration')
        self.clock.advance(61)
        self.otp.resend('a@b.com', 'registration')

    def test_record_has_redis_ttl(self):
        """Тест: TTL ключа совпадает со сроком хранения записи"""
        self.otp.send('user@example.com')
        ttl = self.store.client.ttl('otp:user@example.com')
        self.assertAlmostEqual(ttl, 600 + 1800, delta=1)

    def test_sweep(self):
        self.otp.send('old@example.com')
        self.clock.advance(601)
        self.otp.send('new@example.com')

        self.assertEqual(self.otp.sweep(), 1)
        self.assertFalse(self.otp.status('old@example.com')['has_otp'])
        self.assertTrue(self.otp.status('new@example.com')['has_otp'])

    def test_sweep_keeps_record_rewritten_during_sweep(self):
        """Тест: код, выданный между чтением и удалением, чистка не трогает"""
        client = InterleavingRedis(server=fakeredis.FakeServer(), decode_responses=True)
        store = RedisExpiringStore('otp', clock=self.clock, client=client)
        otp = OtpService(
            store=store, send_code=lambda email, code, purpose: self.sent.append(code), clock=self.clock,
        )
        otp.send('a@b.com', 'login')
        self.clock.advance(600 + 1800 + 1)

        client.after_get = lambda: otp.send('a@b.com', 'login')
        self.assertEqual(otp.sweep(), 0)

        status = otp.status('a@b.com')
        self.assertTrue(status['has_otp'])
        self.assertFalse(status['is_expired'])
        otp.verify('a@b.com', self.sent[-1])

    def test_busy_record_is_rate_limited(self):
        """Тест: запись занята параллельным запросом - 429, а не 500"""
        self.otp.send('user@example.com')
        self.store.UPDATE_LOCK_WAIT = 0
        with hold_lock('lock:otp:user@example.com', 5):
            with self.assertRaises(RateLimited):
                self.otp.verify('user@example.com', self.sent[-1])
        self.otp.verify('user@example.com', self.sent[-1])


class OtpMailTestCase(SimpleTestCase):

    def test_code_is_mailed(self):
        """Тест: код уходит письмом через почтовый backend"""
        otp = OtpService(store=InMemoryExpiringStore('otp'))
        otp.send('user@example.com', 'password-reset')

        self.assertEqual(len(django_mail.outbox), 1)
        message = django_mail.outbox[0]
        self.assertEqual(message.to, ['user@example.com'])
        self.assertIn('Password Reset Code', message.subject)
