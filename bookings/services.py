import logging
from datetime import date as date_cls, datetime, time as time_cls, timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime, parse_time

from core.exceptions import Conflict, InvalidInput, NotFound, PermissionDenied, ResourceUnavailable
from core.lock import LockNotAcquired, hold_lock
from core.pagination import paginate
from notifications.services import notify
from resources.models import Equipment, Lab

from .models import Booking

logger = logging.getLogger(__name__)

RESOURCE_MODELS = {
    'lab': Lab,
    'equipment': Equipment,
}

# Статусы, в которые бронирование переводит персонал
STAFF_STATUSES = ('confirmed', 'completed')


def _parse_instant(value, field):
    if isinstance(value, datetime):
        instant = value
    else:
        try:
            instant = parse_datetime(str(value).strip()) if value else None
        except ValueError:
            instant = None
    if instant is None:
        raise InvalidInput(f'Invalid date or time format: {field}')
    if timezone.is_naive(instant):
        instant = timezone.make_aware(instant)
    return instant


def _parse_day(value):
    if isinstance(value, date_cls):
        return value
    try:
        day = parse_date(str(value).strip())
    except ValueError:
        day = None
    if day is None:
        raise InvalidInput('Invalid date format, expected YYYY-MM-DD')
    return day


def _parse_clock(value, field):
    if isinstance(value, time_cls):
        clock = value
    else:
        try:
            clock = parse_time(str(value).strip())
        except ValueError:
            clock = None
    if clock is None:
        raise InvalidInput(f'Invalid time format: {field}')
    # секунды и доли секунды не учитываем
    return clock.replace(second=0, microsecond=0)


def parse_interval(starts_at=None, ends_at=None, date=None, start_time=None, end_time=None):
    """
    Собирает интервал бронирования из date + start_time/end_time или из starts_at/ends_at.
    Наивные значения трактуются в текущем часовом поясе.
    :return: (start, end) - aware datetime
    """
    if date and start_time and end_time:
        day = _parse_day(date)
        start = datetime.combine(day, _parse_clock(start_time, 'start_time'))
        end = datetime.combine(day, _parse_clock(end_time, 'end_time'))
        return timezone.make_aware(start), timezone.make_aware(end)
    if starts_at and ends_at:
        return _parse_instant(starts_at, 'starts_at'), _parse_instant(ends_at, 'ends_at')
    raise InvalidInput('Please provide date, start_time and end_time')


def _int_param(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f'{name} must be an integer')


class BookingService:
    """
    Бронирование лабораторий и оборудования с проверкой пересечений
    """

    @classmethod
    def is_privileged(cls, user):
        """Все, кроме студентов, видят и меняют чужие бронирования"""
        return user.role != 'student'

    @classmethod
    def lock_key(cls, resource_kind, resource_id):
        return f"lock:booking:{resource_kind}:{resource_id}"

    @classmethod
    def find_overlapping(cls, resource_kind, resource_id, start, end, statuses=Booking.ACTIVE_STATUSES):
        """
        Бронирования ресурса, пересекающиеся с [start, end).
        Стык (existing.ends_at == start) пересечением не считается.
        """
        resource_field = 'lab_id' if resource_kind == 'lab' else 'equipment_id'
        return Booking.objects.filter(
            resource_kind=resource_kind,
            status__in=statuses,
            starts_at__lt=end,
            ends_at__gt=start,
            **{resource_field: resource_id},
        )

    @classmethod
    def get_active_resource(cls, resource_kind, resource_id, for_update=False):
        model = RESOURCE_MODELS[resource_kind]
        queryset = model.objects.filter(pk=resource_id, is_active=True)
        if for_update:
            queryset = queryset.select_for_update()
        resource = queryset.first()
        if resource is None:
            raise NotFound(f'{resource_kind.capitalize()} not found or inactive')
        if resource_kind == 'equipment' and not resource.lab.is_active:
            raise NotFound('Lab not found or inactive')
        return resource

    @classmethod
    def propose_booking(cls, resource_kind, resource_id, start, end, user, purpose=''):
        """
        Проверяет слот и создаёт бронирование в статусе pending.
        Проверка пересечений и вставка идут под Redis-локом ресурса
        и в одной транзакции с блокировкой строки ресурса.
        :raises InvalidInput, NotFound, ResourceUnavailable, Conflict
        """
        if resource_kind not in RESOURCE_MODELS:
            raise InvalidInput(f'Unknown resource kind: {resource_kind}')
        resource_id = _int_param(resource_id, 'resource_id')
        start = _parse_instant(start, 'start')
        end = _parse_instant(end, 'end')

        if end <= start:
            raise InvalidInput('End time must be after start time')
        grace = timedelta(seconds=settings.BOOKING_PAST_GRACE_SECONDS)
        if start < timezone.now() - grace:
            raise InvalidInput('Cannot book for past dates/times')

        try:
            with hold_lock(
                cls.lock_key(resource_kind, resource_id),
                settings.BOOKING_LOCK_TTL_SECONDS,
                wait=settings.BOOKING_LOCK_WAIT_SECONDS,
            ):
                booking = cls._create_if_free(resource_kind, resource_id, start, end, user, purpose)
        except LockNotAcquired:
            logger.warning(f"Ресурс {resource_kind}:{resource_id} занят другим запросом бронирования")
            raise Conflict('Resource is busy with another booking request, please retry')

        logger.info(
            f"Создано бронирование {booking.pk}: {resource_kind}:{resource_id} "
            f"{start.isoformat()} - {end.isoformat()}, пользователь {user.pk}"
        )
        notify(
            user.pk,
            'booking',
            'Booking Created',
            f'Your {resource_kind} booking has been created for {timezone.localtime(start):%Y-%m-%d %H:%M}.',
            {
                'booking_id': booking.pk,
                'resource_kind': resource_kind,
                'resource_id': resource_id,
                'starts_at': start,
                'ends_at': end,
            },
        )
        return Booking.objects.select_related('lab', 'equipment', 'user').get(pk=booking.pk)

    @classmethod
    def _create_if_free(cls, resource_kind, resource_id, start, end, user, purpose):
        with transaction.atomic():
            resource = cls.get_active_resource(resource_kind, resource_id, for_update=True)
            if resource_kind == 'equipment' and resource.status != 'available':
                raise ResourceUnavailable(f'Equipment is currently {resource.status}')

            if cls.find_overlapping(resource_kind, resource_id, start, end).exists():
                raise Conflict('Time slot already booked')

            return Booking.objects.create(
                user=user,
                resource_kind=resource_kind,
                lab=resource if resource_kind == 'lab' else resource.lab,
                equipment=resource if resource_kind == 'equipment' else None,
                starts_at=start,
                ends_at=end,
                purpose=(purpose or '').strip(),
                status='pending',
            )

    @classmethod
    def get_booking(cls, booking_id, user):
        booking = (
            Booking.objects.select_related('lab', 'equipment', 'user')
            .filter(pk=_int_param(booking_id, 'booking_id'))
            .first()
        )
        if booking is None:
            raise NotFound('Booking not found')
        if not cls.is_privileged(user) and booking.user_id != user.pk:
            raise PermissionDenied('You do not have permission to view this booking')
        return booking

    @classmethod
    def cancel_booking(cls, booking_id, user):
        """
        Отмена - смена статуса, строка остаётся для истории.
        Повторная отмена ничего не меняет.
        """
        booking = cls.get_booking(booking_id, user)
        if booking.status == 'cancelled':
            return booking
        if booking.status == 'completed':
            raise InvalidInput('Completed bookings cannot be cancelled')

        booking.status = 'cancelled'
        booking.save(update_fields=['status', 'updated_at'])
        logger.info(f"Бронирование {booking.pk} отменено пользователем {user.pk}")
        return booking

    @classmethod
    def update_status(cls, booking_id, new_status, user):
        if not user.is_lab_staff:
            raise PermissionDenied('You do not have permission to modify this booking')
        if new_status not in STAFF_STATUSES:
            raise InvalidInput(f"Status must be one of: {', '.join(STAFF_STATUSES)}")

        booking = cls.get_booking(booking_id, user)
        try:
            with hold_lock(
                cls.lock_key(booking.resource_kind, booking.resource_id),
                settings.BOOKING_LOCK_TTL_SECONDS,
                wait=settings.BOOKING_LOCK_WAIT_SECONDS,
            ):
                old_status = cls._set_status_if_free(booking, new_status)
        except LockNotAcquired:
            logger.warning(f"Бронирование {booking.pk}: ресурс занят другим запросом")
            raise Conflict('Resource is busy with another booking request, please retry')

        if old_status != new_status:
            logger.info(f"Бронирование {booking.pk}: {old_status} -> {new_status}, пользователь {user.pk}")
            notify(
                booking.user_id,
                'booking',
                f'Booking {new_status.capitalize()}',
                f'Your booking #{booking.pk} is now {new_status}.',
                {'booking_id': booking.pk, 'old_status': old_status, 'new_status': new_status},
            )
        return booking

    @classmethod
    def _set_status_if_free(cls, booking, new_status):
        """
        Меняет статус под блокировкой строки.
        Возврат в активный статус (completed -> confirmed) снова занимает слот,
        поэтому пересечения проверяются заново.
        :return: прежний статус
        """
        with transaction.atomic():
            old_status = (
                Booking.objects.select_for_update()
                .values_list('status', flat=True)
                .get(pk=booking.pk)
            )
            if old_status == 'cancelled':
                raise InvalidInput('Cancelled bookings cannot be changed')

            if new_status in Booking.ACTIVE_STATUSES and old_status not in Booking.ACTIVE_STATUSES:
                overlapping = cls.find_overlapping(
                    booking.resource_kind, booking.resource_id, booking.starts_at, booking.ends_at
                ).exclude(pk=booking.pk)
                if overlapping.exists():
                    raise Conflict('Time slot already booked')

            booking.status = new_status
            booking.save(update_fields=['status', 'updated_at'])
            return old_status

    @classmethod
    def list_bookings(cls, user, params):
        """
        Список бронирований с фильтрами и пагинацией.
        Без диапазона дат показываются бронирования начиная с сегодняшнего дня.
        """
        queryset = Booking.objects.select_related('lab', 'equipment', 'user')

        if not cls.is_privileged(user) or params.get('my_bookings') == 'true':
            queryset = queryset.filter(user=user)
        elif params.get('user_id'):
            queryset = queryset.filter(user_id=_int_param(params['user_id'], 'user_id'))

        if params.get('status'):
            queryset = queryset.filter(status=params['status'])
        if params.get('resource_kind'):
            queryset = queryset.filter(resource_kind=params['resource_kind'])
        if params.get('lab_id'):
            queryset = queryset.filter(lab_id=_int_param(params['lab_id'], 'lab_id'))
        if params.get('equipment_id'):
            queryset = queryset.filter(equipment_id=_int_param(params['equipment_id'], 'equipment_id'))

        start_date = params.get('start_date')
        end_date = params.get('end_date')
        if start_date or end_date:
            if start_date:
                day = _parse_day(start_date)
                queryset = queryset.filter(starts_at__gte=timezone.make_aware(datetime.combine(day, time_cls.min)))
            if end_date:
                day = _parse_day(end_date) + timedelta(days=1)
                queryset = queryset.filter(starts_at__lt=timezone.make_aware(datetime.combine(day, time_cls.min)))
        else:
            today = timezone.localdate()
            queryset = queryset.filter(starts_at__gte=timezone.make_aware(datetime.combine(today, time_cls.min)))

        return paginate(queryset.order_by('starts_at'), params)

    @classmethod
    def get_stats(cls, user):
        queryset = Booking.objects.all()
        if not cls.is_privileged(user):
            queryset = queryset.filter(user=user)

        stats = queryset.aggregate(
            total=Count('id'),
            pending=Count('id', filter=Q(status='pending')),
            confirmed=Count('id', filter=Q(status='confirmed')),
            completed=Count('id', filter=Q(status='completed')),
            cancelled=Count('id', filter=Q(status='cancelled')),
        )
        stats['active'] = stats['pending'] + stats['confirmed']
        return stats

    @classmethod
    def get_upcoming(cls, user, limit=10):
        queryset = Booking.objects.select_related('lab', 'equipment', 'user').filter(
            starts_at__gte=timezone.now(),
            status__in=Booking.ACTIVE_STATUSES,
        )
        if not cls.is_privileged(user):
            queryset = queryset.filter(user=user)
        limit = min(max(_int_param(limit, 'limit'), 1), 100)
        return list(queryset.order_by('starts_at')[:limit])
