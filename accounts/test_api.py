import re
from smtplib import SMTPException
from unittest import mock

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient

from .sessions import get_session_store

User = get_user_model()


def last_mailed_code():
    return re.search(r'\b(\d{6})\b', mail.outbox[-1].body).group(1)


class AuthAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(
            email='user@example.com',
            password='testpass123',
            name='Test User',
        )

    def login(self, email='user@example.com', password='testpass123'):
        return self.client.post('/api/auth/login', {'email': email, 'password': password}, format='json')

    def test_register_with_otp_flow(self):
        """Тест регистрации: код -> подтверждение -> создание аккаунта с сессией"""
        payload = {'name': 'New Student', 'email': 'New@Example.com', 'password': 'secret123', 'role': 'student'}

        response = self.client.post('/api/auth/register', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['expires_in_seconds'], 600)
        self.assertEqual(mail.outbox[-1].to, ['new@example.com'])

        response = self.client.post(
            '/api/auth/verify-otp', {'email': 'new@example.com', 'otp': last_mailed_code()}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.post('/api/auth/register-with-otp', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIn('sessionId', response.cookies)

        user = User.objects.get(email='new@example.com')
        self.assertTrue(user.is_email_verified)
        self.assertTrue(user.check_password('secret123'))
        self.assertNotEqual(user.password, 'secret123')

        response = self.client.get('/api/auth/me')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['email'], 'new@example.com')

    def test_register_with_otp_requires_verification(self):
        """Тест: без подтверждённого кода аккаунт не создаётся"""
        payload = {'name': 'New Student', 'email': 'new@example.com', 'password': 'secret123'}
        self.client.post('/api/auth/register', payload, format='json')

        response = self.client.post('/api/auth/register-with-otp', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(User.objects.filter(email='new@example.com').exists())

    def test_register_existing_email(self):
        """Тест: email уже занят (без учёта регистра)"""
        payload = {'name': 'Someone', 'email': 'USER@example.com', 'password': 'secret123'}
        response = self.client.post('/api/auth/register', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_input')
        self.assertIn('email', response.data['errors'])

    def test_register_cannot_pick_staff_role(self):
        """Тест: роль персонала нельзя выбрать при регистрации"""
        payload = {'name': 'Someone', 'email': 'new@example.com', 'password': 'secret123', 'role': 'admin'}
        response = self.client.post('/api/auth/register', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_login_sets_session_cookie(self):
        """Тест: cookie сессии HttpOnly, SameSite=Lax, сутки"""
        response = self.login()
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        cookie = response.cookies['sessionId']
        self.assertEqual(len(cookie.value), 64)
        self.assertTrue(cookie['httponly'])
        self.assertEqual(cookie['samesite'], 'Lax')
        self.assertEqual(int(cookie['max-age']), 86400)
        self.assertTrue(cookie['secure'])

        response = self.client.get('/api/auth/verify')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_login_invalid_credentials(self):
        response = self.login(password='wrong-password')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data, {'error': 'Invalid credentials', 'code': 'invalid_input'})

    def test_login_inactive_account(self):
        self.user.is_active = False
        self.user.save()
        response = self.login()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_logout_invalidates_token(self):
        """Тест: после выхода токен больше не действует"""
        token = self.login().cookies['sessionId'].value

        response = self.client.post('/api/auth/logout')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.cookies['sessionId'].value, '')
        self.assertIsNone(get_session_store().lookup(token))

        self.client.cookies['sessionId'] = token
        response = self.client.get('/api/auth/me')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_without_session(self):
        response = self.client.get('/api/auth/me')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_session_of_deactivated_user_is_dropped(self):
        """Тест: сессия деактивированного пользователя удаляется"""
        token = self.login().cookies['sessionId'].value
        User.objects.filter(pk=self.user.pk).update(is_active=False)

        response = self.client.get('/api/auth/me')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertIsNone(get_session_store().lookup(token))

    def test_login_with_otp(self):
        """Тест входа по одноразовому коду"""
        response = self.client.post(
            '/api/auth/send-otp', {'email': 'user@example.com', 'purpose': 'login'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.post(
            '/api/auth/login-with-otp', {'email': 'user@example.com', 'otp': last_mailed_code()}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('sessionId', response.cookies)

    def test_resend_too_early(self):
        """Тест: повторная отправка раньше минуты"""
        body = {'email': 'user@example.com', 'purpose': 'login'}
        self.client.post('/api/auth/send-otp', body, format='json')

        response = self.client.post('/api/auth/resend-otp', body, format='json')
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data['code'], 'rate_limited')

    def test_resend_checks_recipient(self):
        """Тест: повторная отправка проверяет аккаунт так же, как первая"""
        response = self.client.post(
            '/api/auth/resend-otp', {'email': 'ghost@example.com', 'purpose': 'login'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.client.post(
            '/api/auth/resend-otp', {'email': 'ghost@example.com', 'purpose': 'password-reset'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.client.post(
            '/api/auth/resend-otp', {'email': 'user@example.com', 'purpose': 'registration'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_input')
        self.assertEqual(len(mail.outbox), 0)

        response = self.client.post(
            '/api/auth/resend-otp', {'email': 'user@example.com', 'purpose': 'login'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(mail.outbox), 1)

    def test_verify_otp_bad_format(self):
        """Тест: код не из 6 цифр"""
        response = self.client.post(
            '/api/auth/verify-otp', {'email': 'user@example.com', 'otp': '12345'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_input')

    def test_verify_otp_wrong_code_reports_attempts(self):
        self.client.post('/api/auth/send-otp', {'email': 'user@example.com', 'purpose': 'login'}, format='json')
        wrong = '000000' if last_mailed_code() != '000000' else '111111'

        response = self.client.post('/api/auth/verify-otp', {'email': 'user@example.com', 'otp': wrong}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_code')
        self.assertEqual(response.data['attempts_remaining'], 4)

    def test_otp_status(self):
        response = self.client.get('/api/auth/otp-status', {'email': 'user@example.com'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['data']['has_otp'])

    def test_forgot_password_generic_answer(self):
        """Тест: ответ не раскрывает, существует ли аккаунт"""
        known = self.client.post('/api/auth/forgot-password', {'email': 'user@example.com'}, format='json')
        unknown = self.client.post('/api/auth/forgot-password', {'email': 'ghost@example.com'}, format='json')

        self.assertEqual(known.status_code, status.HTTP_200_OK)
        self.assertEqual(known.data, unknown.data)
        self.assertEqual(len(mail.outbox), 1)

    def test_forgot_password_delivery_failure_is_hidden(self):
        """Тест: сбой почты для существующего аккаунта даёт тот же ответ"""
        with mock.patch('accounts.mail.send_otp', side_effect=SMTPException('smtp down')):
            known = self.client.post('/api/auth/forgot-password', {'email': 'user@example.com'}, format='json')
        unknown = self.client.post('/api/auth/forgot-password', {'email': 'ghost@example.com'}, format='json')

        self.assertEqual(known.status_code, status.HTTP_200_OK)
        self.assertEqual(known.data, unknown.data)

    def test_reset_password_revokes_sessions(self):
        """Тест: смена пароля завершает все сессии"""
        token = self.login().cookies['sessionId'].value
        self.client.post('/api/auth/forgot-password', {'email': 'user@example.com'}, format='json')

        response = self.client.post('/api/auth/reset-password', {
            'email': 'user@example.com',
            'otp': last_mailed_code(),
            'new_password': 'brand-new-pass',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('brand-new-pass'))
        self.assertIsNone(get_session_store().lookup(token))
        self.assertEqual(self.login(password='testpass123').status_code, status.HTTP_400_BAD_REQUEST)

    def test_verify_and_activate(self):
        """Тест активации аккаунта по коду"""
        self.user.is_active = False
        self.user.save()
        self.client.post(
            '/api/auth/send-otp', {'email': 'user@example.com', 'purpose': 'verification'}, format='json'
        )

        response = self.client.post(
            '/api/auth/verify-and-activate', {'email': 'user@example.com', 'otp': last_mailed_code()}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.is_active)
        self.assertTrue(self.user.is_email_verified)
