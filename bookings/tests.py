import threading
from datetime import datetime, timedelta
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from core.exceptions import Conflict, InvalidInput, NotFound, PermissionDenied, ResourceUnavailable
from notifications.models import Notification
from resources.models import Equipment, Lab

from .models import Booking
from .services import BookingService, parse_interval

User = get_user_model()

FROZEN_NOW = datetime(2024, 1, 9, 12, 0)


def at(day, hour, minute=0):
    return timezone.make_aware(datetime(2024, 1, day, hour, minute))


class FrozenTimeMixin:
    """Текущее время - 2024-01-09 12:00, чтобы даты сценариев не устаревали"""

    def freeze_time(self):
        patcher = mock.patch('django.utils.timezone.now', return_value=timezone.make_aware(FROZEN_NOW))
        patcher.start()
        self.addCleanup(patcher.stop)


class BookingServiceTestCase(FrozenTimeMixin, TestCase):

    def setUp(self):
        self.freeze_time()
        self.student = User.objects.create_user(email='student@example.com', password='testpass123', name='Student')
        self.other = User.objects.create_user(email='other@example.com', password='testpass123', name='Other')
        self.staff = User.objects.create_user(
            email='assistant@example.com', password='testpass123', role='lab_assistant'
        )
        self.lab = Lab.objects.create(pk=5, name='Chemistry Lab', location='Building A', capacity=20)
        self.equipment = Equipment.objects.create(
            lab=self.lab, name='Spectrometer', serial_number='SP-001', category='optics'
        )

    def propose(self, start, end, user=None, kind='lab', resource_id=5):
        return BookingService.propose_booking(kind, resource_id, start, end, user or self.student)

    def test_lab_scenario(self):
        """Тест: 09-10 создаётся, 09:30-10:30 конфликт, 10-11 встык - создаётся"""
        first = self.propose(at(10, 9), at(10, 10))
        self.assertEqual(first.status, 'pending')

        with self.assertRaises(Conflict):
            self.propose(at(10, 9, 30), at(10, 10, 30))

        second = self.propose(at(10, 10), at(10, 11))
        self.assertEqual(second.status, 'pending')
        self.assertEqual(Booking.objects.filter(lab=self.lab).count(), 2)

    def test_interval_is_preserved(self):
        booking = self.propose(at(10, 14, 15), at(10, 15, 45))
        self.assertEqual(booking.starts_at, at(10, 14, 15))
        self.assertEqual(booking.ends_at, at(10, 15, 45))
        self.assertEqual(booking.resource_kind, 'lab')
        self.assertEqual(booking.user, self.student)

    def test_back_to_back_before_existing(self):
        """Тест: конец новой брони совпадает с началом существующей"""
        self.propose(at(10, 9), at(10, 10))
        self.propose(at(10, 8), at(10, 9))

    def test_overlaps_detected(self):
        """Тест: вложенный и охватывающий интервалы конфликтуют"""
        self.propose(at(10, 9), at(10, 12))
        for start, end in [(at(10, 10), at(10, 11)), (at(10, 8), at(10, 13)), (at(10, 11, 59), at(10, 14))]:
            with self.assertRaises(Conflict):
                self.propose(start, end, user=self.other)

    def test_cancel_then_rebook(self):
        """Тест: после отмены тот же слот снова свободен"""
        booking = self.propose(at(10, 9), at(10, 10))
        cancelled = BookingService.cancel_booking(booking.pk, self.student)
        self.assertEqual(cancelled.status, 'cancelled')

        rebooked = self.propose(at(10, 9), at(10, 10), user=self.other)
        self.assertEqual(rebooked.status, 'pending')

    def test_cancel_is_idempotent(self):
        booking = self.propose(at(10, 9), at(10, 10))
        BookingService.cancel_booking(booking.pk, self.student)
        again = BookingService.cancel_booking(booking.pk, self.student)
        self.assertEqual(again.status, 'cancelled')

    def test_completed_booking_does_not_block(self):
        booking = self.propose(at(10, 9), at(10, 10))
        BookingService.update_status(booking.pk, 'completed', self.staff)
        self.propose(at(10, 9), at(10, 10), user=self.other)

    def test_reactivating_completed_booking_checks_overlap(self):
        """Тест: completed -> confirmed не должен создать пересечение"""
        first = self.propose(at(10, 9), at(10, 10))
        BookingService.update_status(first.pk, 'completed', self.staff)
        self.propose(at(10, 9, 30), at(10, 10, 30), user=self.other)

        with self.assertRaises(Conflict):
            BookingService.update_status(first.pk, 'confirmed', self.staff)

        first.refresh_from_db()
        self.assertEqual(first.status, 'completed')
        self.assertEqual(
            BookingService.find_overlapping('lab', 5, at(10, 9), at(10, 10)).count(), 1
        )

    def test_reactivating_completed_booking_with_free_slot(self):
        booking = self.propose(at(10, 9), at(10, 10))
        BookingService.update_status(booking.pk, 'completed', self.staff)
        self.propose(at(10, 10), at(10, 11), user=self.other)

        confirmed = BookingService.update_status(booking.pk, 'confirmed', self.staff)
        self.assertEqual(confirmed.status, 'confirmed')

    def test_end_must_follow_start(self):
        with self.assertRaises(InvalidInput):
            self.propose(at(10, 10), at(10, 10))
        with self.assertRaises(InvalidInput):
            self.propose(at(10, 11), at(10, 10))

    def test_past_start_rejected(self):
        """Тест: начало в прошлом больше чем на 5 минут"""
        with self.assertRaises(InvalidInput):
            self.propose(at(9, 11, 54), at(9, 13))

    def test_past_start_within_grace(self):
        booking = self.propose(at(9, 11, 56), at(9, 13))
        self.assertEqual(booking.status, 'pending')

    def test_inactive_or_missing_lab(self):
        self.lab.is_active = False
        self.lab.save()
        with self.assertRaises(NotFound):
            self.propose(at(10, 9), at(10, 10))
        with self.assertRaises(NotFound):
            self.propose(at(10, 9), at(10, 10), resource_id=999)

    def test_unknown_resource_kind(self):
        with self.assertRaises(InvalidInput):
            self.propose(at(10, 9), at(10, 10), kind='room')

    def test_equipment_booking(self):
        """Тест: бронь оборудования привязана к его лаборатории и не конфликтует с бронью лаборатории"""
        self.propose(at(10, 9), at(10, 10))
        booking = self.propose(at(10, 9), at(10, 10), kind='equipment', resource_id=self.equipment.pk)
        self.assertEqual(booking.equipment, self.equipment)
        self.assertEqual(booking.lab, self.lab)
        self.assertEqual(booking.resource_id, self.equipment.pk)

        with self.assertRaises(Conflict):
            self.propose(at(10, 9, 30), at(10, 11), kind='equipment', resource_id=self.equipment.pk)

    def test_equipment_in_maintenance(self):
        self.equipment.status = 'maintenance'
        self.equipment.save()
        with self.assertRaises(ResourceUnavailable):
            self.propose(at(10, 9), at(10, 10), kind='equipment', resource_id=self.equipment.pk)

    def test_notification_is_created(self):
        self.propose(at(10, 9), at(10, 10))
        notification = Notification.objects.get(user=self.student)
        self.assertEqual(notification.type, 'booking')
        self.assertEqual(notification.metadata['resource_kind'], 'lab')

    def test_notification_failure_does_not_fail_booking(self):
        """Тест: сбой уведомления не мешает бронированию"""
        with mock.patch(
            'notifications.services.create_notification.delay', side_effect=ConnectionError('broker down')
        ):
            booking = self.propose(at(10, 9), at(10, 10))
        self.assertEqual(booking.status, 'pending')
        self.assertTrue(Booking.objects.filter(pk=booking.pk).exists())
        self.assertFalse(Notification.objects.exists())

    def test_cache_outage_does_not_fail_booking(self):
        """Тест: недоступный кеш доступности не откатывает бронирование"""
        with mock.patch('resources.cache.cache') as broken_cache:
            for method in (broken_cache.get, broken_cache.set, broken_cache.delete):
                method.side_effect = ConnectionError('cache down')
            booking = self.propose(at(10, 9), at(10, 10))
            BookingService.update_status(booking.pk, 'confirmed', self.staff)
        self.assertTrue(Booking.objects.filter(pk=booking.pk, status='confirmed').exists())

    def test_lock_timeout_is_conflict(self):
        """Тест: занятый лок ресурса отвечает конфликтом"""
        with self.settings(BOOKING_LOCK_WAIT_SECONDS=0):
            with mock.patch('core.lock.acquire_lock', return_value=None):
                with self.assertRaises(Conflict):
                    self.propose(at(10, 9), at(10, 10))

    def test_visibility(self):
        """Тест: студент видит только свои брони, персонал - все"""
        booking = self.propose(at(10, 9), at(10, 10), user=self.other)

        with self.assertRaises(PermissionDenied):
            BookingService.get_booking(booking.pk, self.student)
        with self.assertRaises(PermissionDenied):
            BookingService.cancel_booking(booking.pk, self.student)
        self.assertEqual(BookingService.get_booking(booking.pk, self.staff), booking)
        with self.assertRaises(NotFound):
            BookingService.get_booking(999, self.staff)

    def test_update_status(self):
        booking = self.propose(at(10, 9), at(10, 10))
        with self.assertRaises(PermissionDenied):
            BookingService.update_status(booking.pk, 'confirmed', self.student)
        faculty = User.objects.create_user(email='prof@example.com', password='testpass123', role='faculty')
        with self.assertRaises(PermissionDenied):
            BookingService.update_status(booking.pk, 'confirmed', faculty)

        confirmed = BookingService.update_status(booking.pk, 'confirmed', self.staff)
        self.assertEqual(confirmed.status, 'confirmed')
        with self.assertRaises(InvalidInput):
            BookingService.update_status(booking.pk, 'pending', self.staff)

        BookingService.cancel_booking(booking.pk, self.staff)
        with self.assertRaises(InvalidInput):
            BookingService.update_status(booking.pk, 'confirmed', self.staff)

    def test_list_bookings(self):
        mine = self.propose(at(10, 9), at(10, 10))
        self.propose(at(10, 10), at(10, 11), user=self.other)
        self.propose(at(12, 10), at(12, 11), user=self.other)

        items, pagination = BookingService.list_bookings(self.student, {})
        self.assertEqual(items, [mine])
        self.assertEqual(pagination['total'], 1)

        items, pagination = BookingService.list_bookings(self.staff, {'end_date': '2024-01-10'})
        self.assertEqual(pagination['total'], 2)

        items, pagination = BookingService.list_bookings(self.staff, {'limit': 2, 'page': 2})
        self.assertEqual(len(items), 1)
        self.assertEqual(pagination['total_pages'], 2)

    def test_stats_and_upcoming(self):
        first = self.propose(at(10, 9), at(10, 10))
        self.propose(at(11, 9), at(11, 10))
        BookingService.cancel_booking(first.pk, self.student)

        stats = BookingService.get_stats(self.student)
        self.assertEqual(stats['total'], 2)
        self.assertEqual(stats['cancelled'], 1)
        self.assertEqual(stats['active'], 1)

        upcoming = BookingService.get_upcoming(self.student)
        self.assertEqual([b.starts_at for b in upcoming], [at(11, 9)])


class ParseIntervalTestCase(TestCase):

    def test_date_and_times(self):
        """Тест: секунды отбрасываются"""
        start, end = parse_interval(date='2024-01-10', start_time='09:00:45', end_time='10:30')
        self.assertEqual(start, at(10, 9))
        self.assertEqual(end, at(10, 10, 30))

    def test_iso_instants(self):
        start, end = parse_interval(starts_at='2024-01-10T09:00:00Z', ends_at='2024-01-10T10:00:00+00:00')
        self.assertEqual(end - start, timedelta(hours=1))
        self.assertTrue(timezone.is_aware(start))

    def test_invalid_values(self):
        with self.assertRaises(InvalidInput):
            parse_interval(date='2024-01-10', start_time='9am', end_time='10:00')
        with self.assertRaises(InvalidInput):
            parse_interval(date='10/01/2024', start_time='09:00', end_time='10:00')
        with self.assertRaises(InvalidInput):
            parse_interval(date='2024-01-10', start_time='09:00')


class ConcurrentBookingTestCase(FrozenTimeMixin, TransactionTestCase):

    THREADS = 8

    def setUp(self):
        self.freeze_time()
        self.user = User.objects.create_user(email='student@example.com', password='testpass123')
        self.lab = Lab.objects.create(name='Physics Lab', location='Building B', capacity=10)

    def test_only_one_proposal_wins(self):
        """Тест: из N одновременных заявок на один слот проходит ровно одна"""
        barrier = threading.Barrier(self.THREADS)
        results = []
        results_lock = threading.Lock()

        def propose():
            try:
                barrier.wait()
                try:
                    BookingService.propose_booking('lab', self.lab.pk, at(10, 9), at(10, 10), self.user)
                    outcome = 'ok'
                except Conflict:
                    outcome = 'conflict'
                with results_lock:
                    results.append(outcome)
            finally:
                connection.close()

        with mock.patch('bookings.services.notify'):
            threads = [threading.Thread(target=propose) for _ in range(self.THREADS)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(results.count('ok'), 1)
        self.assertEqual(results.count('conflict'), self.THREADS - 1)
        self.assertEqual(
            Booking.objects.filter(lab=self.lab, status__in=Booking.ACTIVE_STATUSES).count(), 1
        )
