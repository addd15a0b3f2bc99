from datetime import datetime, timezone as dt_timezone
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient

from .models import Notification
from .services import notify

User = get_user_model()


class NotifyTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(email='user@example.com', password='testpass123')

    def test_notify_creates_notification(self):
        """Тест: уведомление создаётся задачей, даты в metadata приводятся к строкам"""
        starts_at = datetime(2024, 1, 10, 9, 0, tzinfo=dt_timezone.utc)
        self.assertTrue(notify(self.user.pk, 'booking', 'Booking Created', 'Created', {'starts_at': starts_at}))

        notification = Notification.objects.get(user=self.user)
        self.assertEqual(notification.metadata, {'starts_at': '2024-01-10T09:00:00Z'})
        self.assertFalse(notification.read)

    def test_notify_never_raises(self):
        """Тест: сбой постановки задачи только логируется"""
        with mock.patch('notifications.services.create_notification.delay', side_effect=RuntimeError('broker down')):
            self.assertFalse(notify(self.user.pk, 'system', 'Title', 'Message'))
        self.assertFalse(Notification.objects.exists())


class NotificationAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email='user@example.com', password='testpass123')
        self.other = User.objects.create_user(email='other@example.com', password='testpass123')
        for index in range(3):
            Notification.objects.create(user=self.user, type='booking', title=f'Booking {index}', message='...')
        Notification.objects.create(user=self.user, type='account', title='Welcome', message='...')
        self.foreign = Notification.objects.create(user=self.other, type='system', title='Other', message='...')

        response = self.client.post(
            '/api/auth/login', {'email': 'user@example.com', 'password': 'testpass123'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_list_filters(self):
        response = self.client.get('/api/notifications/', {'type': 'booking', 'limit': 2})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['data']), 2)
        self.assertEqual(response.data['pagination']['total'], 3)
        self.assertEqual(response.data['pagination']['total_pages'], 2)

    def test_read_all(self):
        response = self.client.post('/api/notifications/read-all/')
        self.assertEqual(response.data['data']['updated'], 4)

        response = self.client.get('/api/notifications/', {'unread_only': 'true'})
        self.assertEqual(response.data['pagination']['total'], 0)
        self.assertFalse(Notification.objects.get(pk=self.foreign.pk).read)

    def test_foreign_notification_is_hidden(self):
        """Тест: чужие уведомления недоступны"""
        response = self.client.delete(f'/api/notifications/{self.foreign.pk}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(Notification.objects.filter(pk=self.foreign.pk).exists())

    def test_delete(self):
        notification = Notification.objects.filter(user=self.user).first()
        response = self.client.delete(f'/api/notifications/{notification.pk}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Notification.objects.filter(pk=notification.pk).exists())
