from django.utils import timezone
from datetime import datetime, time, timedelta
import logging

from bookings.models import Booking
from core.exceptions import NotFound

from .cache import AvailabilityCache
from .models import Equipment, Lab

logger = logging.getLogger(__name__)

RESOURCE_MODELS = {
    'lab': Lab,
    'equipment': Equipment,
}


class AvailabilityService:
    """
    Сервис доступности лабораторий и оборудования
    """

    # Длительность слота по умолчанию (в минутах)
    DEFAULT_SLOT_DURATION = 60

    # Рабочие часы
    DAY_START_HOUR = 8
    DAY_END_HOUR = 20

    @classmethod
    def get_resource_availability(cls, resource_kind, resource_id, date):
        """
        Доступность ресурса на дату (с использованием кеша)
        :raises NotFound: ресурс не найден или неактивен
        """
        cached_data = AvailabilityCache.get_availability(resource_kind, resource_id, date)
        if cached_data is not None:
            logger.debug(f"Данные получены из кеша для {resource_kind}:{resource_id} на {date}")
            return cached_data

        availability_data = cls._calculate_availability(resource_kind, resource_id, date)
        AvailabilityCache.set_availability(resource_kind, resource_id, date, availability_data)

        logger.debug(f"Данные вычислены и сохранены в кеш для {resource_kind}:{resource_id} на {date}")
        return availability_data

    @classmethod
    def _calculate_availability(cls, resource_kind, resource_id, date):
        resource = RESOURCE_MODELS[resource_kind].objects.filter(pk=resource_id, is_active=True).first()
        if resource is None:
            raise NotFound(f'{resource_kind.capitalize()} not found or inactive')

        start_of_day = timezone.make_aware(datetime.combine(date, time.min))
        end_of_day = start_of_day + timedelta(days=1)
        resource_field = 'lab_id' if resource_kind == 'lab' else 'equipment_id'

        bookings = list(Booking.objects.filter(
            resource_kind=resource_kind,
            starts_at__lt=end_of_day,
            ends_at__gt=start_of_day,
            status__in=Booking.ACTIVE_STATUSES,
            **{resource_field: resource_id},
        ).order_by('starts_at'))

        slots = []
        for slot_start, slot_end in cls._generate_time_slots(date):
            is_available = cls._is_slot_available(slot_start, slot_end, bookings)
            slots.append({
                'starts_at': slot_start.isoformat(),
                'ends_at': slot_end.isoformat(),
                'status': 'available' if is_available else 'booked',
                'is_available': is_available,
            })

        return {
            'resource_kind': resource_kind,
            'resource_id': resource.pk,
            'resource_name': resource.name,
            'date': date.isoformat(),
            'slots': slots,
            'available_slots': len([s for s in slots if s['is_available']]),
            'total_slots': len(slots),
            'calculated_at': timezone.now().isoformat(),
        }

    @classmethod
    def _generate_time_slots(cls, date, slot_duration=None):
        """
        Слоты рабочего дня в текущем часовом поясе
        """
        if slot_duration is None:
            slot_duration = cls.DEFAULT_SLOT_DURATION

        slots = []
        current_time = timezone.make_aware(datetime.combine(date, time(hour=cls.DAY_START_HOUR)))
        end_time = timezone.make_aware(datetime.combine(date, time(hour=cls.DAY_END_HOUR)))

        while current_time < end_time:
            slot_end = current_time + timedelta(minutes=slot_duration)
            if slot_end > end_time:
                break
            slots.append((current_time, slot_end))
            current_time = slot_end

        return slots

    @classmethod
    def _is_slot_available(cls, slot_start, slot_end, bookings):
        for booking in bookings:
            if slot_start < booking.ends_at and slot_end > booking.starts_at:
                return False
        return True

    @classmethod
    def handle_resource_change(cls, resource_kind, resource_id):
        logger.info(f"Инвалидация кеша для измененного ресурса: {resource_kind}:{resource_id}")
        AvailabilityCache.invalidate_resource_availability(resource_kind, resource_id)

    @classmethod
    def handle_booking_change(cls, booking):
        affected_dates = cls.get_affected_dates_from_booking(booking)
        logger.info(
            f"Инвалидация кеша для бронирования {booking.pk} "
            f"({booking.resource_kind}:{booking.resource_id}), даты: {affected_dates}"
        )
        AvailabilityCache.invalidate_resource_availability(
            booking.resource_kind, booking.resource_id, affected_dates
        )

    @classmethod
    def get_affected_dates_from_booking(cls, booking):
        """
        Даты (в текущем часовом поясе), которые затрагивает бронирование
        """
        start_date = timezone.localtime(booking.starts_at).date()
        end_date = timezone.localtime(booking.ends_at).date()

        affected_dates = []
        current_date = start_date
        while current_date <= end_date:
            affected_dates.append(current_date)
            current_date += timedelta(days=1)
        return affected_dates
