from datetime import datetime, time, timedelta

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone

from bookings.models import Booking
from core.exceptions import NotFound

from .cache import AvailabilityCache
from .models import Equipment, Lab
from .services import AvailabilityService

User = get_user_model()


class AvailabilityCacheTestCase(TestCase):

    def setUp(self):
        """Настройка тестовых данных"""
        self.lab = Lab.objects.create(name="Тестовая лаборатория", location="Корпус 1", capacity=10)
        self.date = timezone.localdate() + timedelta(days=1)

    def test_availability_cache_set_get(self):
        """Тест сохранения и получения из кеша"""
        test_data = {"resource_id": self.lab.pk, "date": self.date.isoformat(), "slots": []}

        AvailabilityCache.set_availability('lab', self.lab.pk, self.date, test_data)

        self.assertEqual(AvailabilityCache.get_availability('lab', self.lab.pk, self.date), test_data)
        self.assertIsNone(AvailabilityCache.get_availability('equipment', self.lab.pk, self.date))

    def test_invalidate_single_date(self):
        """Тест инвалидации одной даты"""
        other_date = self.date + timedelta(days=1)
        AvailabilityCache.set_availability('lab', self.lab.pk, self.date, {"test": 1})
        AvailabilityCache.set_availability('lab', self.lab.pk, other_date, {"test": 2})

        AvailabilityCache.invalidate_resource_availability('lab', self.lab.pk, [self.date])

        self.assertIsNone(AvailabilityCache.get_availability('lab', self.lab.pk, self.date))
        self.assertEqual(AvailabilityCache.get_availability('lab', self.lab.pk, other_date), {"test": 2})

    def test_invalidate_all_dates(self):
        """Тест инвалидации всех дат ресурса"""
        AvailabilityCache.set_availability('lab', self.lab.pk, self.date, {"test": "data"})
        self.assertEqual(AvailabilityCache.get_availability('lab', self.lab.pk, self.date), {"test": "data"})

        AvailabilityCache.invalidate_resource_availability('lab', self.lab.pk)

        self.assertIsNone(AvailabilityCache.get_availability('lab', self.lab.pk, self.date))


class AvailabilityServiceTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(email='test@example.com', password='testpass123')
        self.lab = Lab.objects.create(name="Лаборатория химии", location="Корпус 2", capacity=12)
        self.equipment = Equipment.objects.create(lab=self.lab, name="Микроскоп", serial_number="MC-1")
        self.date = timezone.localdate() + timedelta(days=1)

    def book(self, start_hour, end_hour, end_minute=0, status='pending', **kwargs):
        kwargs.setdefault('lab', self.lab)
        kwargs.setdefault('resource_kind', 'lab')
        return Booking.objects.create(
            user=self.user,
            starts_at=timezone.make_aware(datetime.combine(self.date, time(start_hour))),
            ends_at=timezone.make_aware(datetime.combine(self.date, time(end_hour, end_minute))),
            status=status,
            **kwargs
        )

    def slot_states(self, data):
        return {
            timezone.localtime(datetime.fromisoformat(slot['starts_at'])).hour: slot['status']
            for slot in data['slots']
        }

    def test_availability_service_calculation(self):
        """Тест вычисления доступности: часовые слоты 08-20"""
        self.book(10, 11, 30)
        self.book(14, 15, status='cancelled')

        data = AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)

        self.assertEqual(data['resource_name'], self.lab.name)
        self.assertEqual(data['date'], self.date.isoformat())
        self.assertEqual(data['total_slots'], 12)
        self.assertEqual(data['available_slots'], 10)
        states = self.slot_states(data)
        self.assertEqual(states[10], 'booked')
        self.assertEqual(states[11], 'booked')
        self.assertEqual(states[14], 'available')
        self.assertEqual(states[8], 'available')

    def test_equipment_and_lab_are_separate(self):
        """Тест: бронь оборудования не занимает лабораторию"""
        self.book(9, 10, resource_kind='equipment', equipment=self.equipment)

        lab_data = AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)
        equipment_data = AvailabilityService.get_resource_availability('equipment', self.equipment.pk, self.date)

        self.assertEqual(lab_data['available_slots'], 12)
        self.assertEqual(self.slot_states(equipment_data)[9], 'booked')

    def test_availability_is_cached(self):
        """Тест: повторный запрос берётся из кеша"""
        first = AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)
        with self.assertNumQueries(0):
            second = AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)
        self.assertEqual(first, second)

    def test_booking_invalidates_cache(self):
        """Тест: новое бронирование сбрасывает кеш его даты"""
        before = AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)
        self.assertEqual(before['available_slots'], 12)

        booking = self.book(8, 9)
        after = AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)
        self.assertEqual(after['available_slots'], 11)

        booking.status = 'cancelled'
        booking.save()
        again = AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)
        self.assertEqual(again['available_slots'], 12)

    def test_resource_change_invalidates_cache(self):
        AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)
        self.lab.name = "Новое название"
        self.lab.save()

        data = AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)
        self.assertEqual(data['resource_name'], "Новое название")

    def test_inactive_resource(self):
        self.lab.is_active = False
        self.lab.save()
        with self.assertRaises(NotFound):
            AvailabilityService.get_resource_availability('lab', self.lab.pk, self.date)


class LabModelTestCase(TestCase):

    def setUp(self):
        self.lab = Lab.objects.create(name="Лаборатория", location="Корпус 3", capacity=15)

    def test_lab_creation(self):
        """Тест создания лаборатории"""
        self.assertEqual(self.lab.capacity, 15)
        self.assertTrue(self.lab.is_active)
        self.assertIsNotNone(self.lab.created_at)
        self.assertEqual(str(self.lab), "Лаборатория (Корпус 3)")

    def test_equipment_is_bookable(self):
        """Тест свойства is_bookable"""
        equipment = Equipment.objects.create(lab=self.lab, name="Центрифуга", serial_number="CF-9")
        self.assertTrue(equipment.is_bookable)

        equipment.status = 'maintenance'
        self.assertFalse(equipment.is_bookable)
