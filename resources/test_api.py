from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from .models import Equipment, Lab

User = get_user_model()


class ResourceAPITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()

        self.user = User.objects.create_user(email='user@example.com', password='testpass123')
        self.staff = User.objects.create_user(
            email='tech@example.com', password='techpass123', role='lab_technician'
        )

        self.lab = Lab.objects.create(name="API лаборатория", location="Корпус 4", capacity=20)
        self.equipment = Equipment.objects.create(lab=self.lab, name="Осциллограф", serial_number="OS-7")

        self.tomorrow = (timezone.localdate() + timedelta(days=1)).isoformat()

    def login(self, user, password):
        response = self.client.post('/api/auth/login', {'email': user.email, 'password': password}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_requires_session(self):
        response = self.client.get('/api/labs/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_get_labs_list(self):
        """Тест получения списка лабораторий"""
        self.login(self.user, 'testpass123')
        response = self.client.get('/api/labs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([lab['id'] for lab in response.data['data']], [self.lab.pk])
        self.assertEqual(response.data['data'][0]['equipment_count'], 1)

    def test_get_equipment_detail(self):
        """Тест получения карточки оборудования"""
        self.login(self.user, 'testpass123')
        response = self.client.get(f'/api/equipment/{self.equipment.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['lab_name'], self.lab.name)
        self.assertTrue(response.data['data']['is_bookable'])

    def test_student_cannot_create_lab(self):
        self.login(self.user, 'testpass123')
        response = self.client.post('/api/labs/', {'name': 'X', 'location': 'Y', 'capacity': 5}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_staff_creates_and_deactivates_lab(self):
        """Тест: персонал создаёт и деактивирует лабораторию"""
        self.login(self.staff, 'techpass123')
        response = self.client.post(
            '/api/labs/', {'name': 'Bio Lab', 'location': 'Block C', 'capacity': 8}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        lab_id = response.data['data']['id']

        response = self.client.get('/api/labs/')
        self.assertEqual(len(response.data['data']), 2)

        response = self.client.delete(f'/api/labs/{lab_id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Lab.objects.get(pk=lab_id).is_active)

        response = self.client.get('/api/labs/')
        self.assertEqual(len(response.data['data']), 1)

    def test_invalid_capacity(self):
        self.login(self.staff, 'techpass123')
        response = self.client.patch(f'/api/labs/{self.lab.pk}/', {'capacity': 0}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('capacity', response.data['errors'])

    def test_get_lab_availability(self):
        """Тест получения доступности лаборатории"""
        self.login(self.user, 'testpass123')
        response = self.client.get(f'/api/labs/{self.lab.pk}/availability/', {'date': self.tomorrow})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['total_slots'], 12)
        self.assertEqual(response.data['data']['available_slots'], 12)

    def test_get_availability_no_date(self):
        """Тест получения доступности без даты"""
        self.login(self.user, 'testpass123')
        response = self.client.get(f'/api/labs/{self.lab.pk}/availability/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_get_availability_invalid_or_past_date(self):
        """Тест получения доступности с неверной или прошедшей датой"""
        self.login(self.user, 'testpass123')
        response = self.client.get(f'/api/equipment/{self.equipment.pk}/availability/', {'date': 'invalid-date'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        yesterday = (timezone.localdate() - timedelta(days=1)).isoformat()
        response = self.client.get(f'/api/equipment/{self.equipment.pk}/availability/', {'date': yesterday})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_availability_of_missing_lab(self):
        self.login(self.user, 'testpass123')
        response = self.client.get('/api/labs/999/availability/', {'date': self.tomorrow})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'not_found')
