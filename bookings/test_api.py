from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from resources.models import Equipment, Lab

from .models import Booking

User = get_user_model()


class BookingAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.student = User.objects.create_user(email='student@example.com', password='testpass123', name='Student')
        self.staff = User.objects.create_user(email='admin@example.com', password='adminpass123', role='admin')
        self.lab = Lab.objects.create(name='Robotics Lab', location='Block D', capacity=15)
        self.equipment = Equipment.objects.create(lab=self.lab, name='3D Printer', serial_number='PR-3')
        self.tomorrow = (timezone.localdate() + timedelta(days=1)).isoformat()

    def login(self, email, password):
        response = self.client.post('/api/auth/login', {'email': email, 'password': password}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def propose(self, start_time='09:00', end_time='10:00', kind='lab', resource_id=None):
        return self.client.post('/api/bookings/', {
            'resource_kind': kind,
            'resource_id': resource_id or self.lab.pk,
            'date': self.tomorrow,
            'start_time': start_time,
            'end_time': end_time,
            'purpose': 'Practice session',
        }, format='json')

    def test_create_booking(self):
        """Тест создания бронирования"""
        self.login('student@example.com', 'testpass123')
        response = self.propose()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        data = response.data['data']
        self.assertEqual(data['status'], 'pending')
        self.assertEqual(data['lab_name'], self.lab.name)
        self.assertIsNone(data['equipment_name'])
        self.assertEqual(data['user_email'], 'student@example.com')

    def test_conflict_response(self):
        """Тест: пересечение даёт 409 и стабильный код ошибки"""
        self.login('student@example.com', 'testpass123')
        self.propose()

        response = self.propose('09:30', '10:30')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data, {'error': 'Time slot already booked', 'code': 'conflict'})

        self.assertEqual(self.propose('10:00', '11:00').status_code, status.HTTP_201_CREATED)

    def test_create_with_instants(self):
        self.login('student@example.com', 'testpass123')
        response = self.client.post('/api/bookings/', {
            'resource_kind': 'equipment',
            'resource_id': self.equipment.pk,
            'starts_at': f'{self.tomorrow}T13:00:00',
            'ends_at': f'{self.tomorrow}T14:00:00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['equipment_name'], '3D Printer')

    def test_create_validation_errors(self):
        self.login('student@example.com', 'testpass123')

        response = self.propose('10:00', '09:00')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_input')

        response = self.client.post('/api/bookings/', {'resource_kind': 'room', 'resource_id': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        self.assertEqual(self.propose(resource_id=999).status_code, status.HTTP_404_NOT_FOUND)

    def test_equipment_unavailable(self):
        self.equipment.status = 'maintenance'
        self.equipment.save()
        self.login('student@example.com', 'testpass123')

        response = self.propose(kind='equipment', resource_id=self.equipment.pk)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'resource_unavailable')

    def test_cancel_and_list(self):
        """Тест отмены и списка бронирований"""
        self.login('student@example.com', 'testpass123')
        booking_id = self.propose().data['data']['id']

        response = self.client.delete(f'/api/bookings/{booking_id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'cancelled')

        response = self.client.get('/api/bookings/', {'status': 'cancelled'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 1)

        self.assertEqual(self.propose().status_code, status.HTTP_201_CREATED)

    def test_status_change_by_staff(self):
        """Тест: подтверждать бронирования может только персонал"""
        self.login('student@example.com', 'testpass123')
        booking_id = self.propose().data['data']['id']

        response = self.client.patch(f'/api/bookings/{booking_id}/status/', {'status': 'confirmed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.login('admin@example.com', 'adminpass123')
        response = self.client.patch(f'/api/bookings/{booking_id}/status/', {'status': 'confirmed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Booking.objects.get(pk=booking_id).status, 'confirmed')

    def test_student_cannot_see_foreign_booking(self):
        self.login('admin@example.com', 'adminpass123')
        booking_id = self.propose().data['data']['id']

        self.login('student@example.com', 'testpass123')
        response = self.client.get(f'/api/bookings/{booking_id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'permission_denied')

    def test_stats_and_upcoming(self):
        self.login('student@example.com', 'testpass123')
        self.propose()
        self.propose('11:00', '12:00')

        response = self.client.get('/api/bookings/stats/')
        self.assertEqual(response.data['data']['total'], 2)
        self.assertEqual(response.data['data']['pending'], 2)

        response = self.client.get('/api/bookings/upcoming/', {'limit': 1})
        self.assertEqual(len(response.data['data']), 1)

    def test_notifications_listed(self):
        """Тест: уведомление о бронировании доступно через API"""
        self.login('student@example.com', 'testpass123')
        self.propose()

        response = self.client.get('/api/notifications/unread-count/')
        self.assertEqual(response.data['data']['count'], 1)

        response = self.client.get('/api/notifications/')
        notification_id = response.data['data'][0]['id']
        self.assertEqual(response.data['data'][0]['title'], 'Booking Created')

        response = self.client.post(f'/api/notifications/{notification_id}/read/')
        self.assertTrue(response.data['data']['read'])
        response = self.client.get('/api/notifications/unread-count/')
        self.assertEqual(response.data['data']['count'], 0)
