from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from bookings.models import Booking

from .models import Equipment, Lab
from .services import AvailabilityService


@receiver(post_save, sender=Lab)
@receiver(post_delete, sender=Lab)
def on_lab_change(sender, instance, **kwargs):
    AvailabilityService.handle_resource_change('lab', instance.pk)


@receiver(post_save, sender=Equipment)
@receiver(post_delete, sender=Equipment)
def on_equipment_change(sender, instance, **kwargs):
    AvailabilityService.handle_resource_change('equipment', instance.pk)


@receiver(post_save, sender=Booking)
@receiver(post_delete, sender=Booking)
def on_booking_change(sender, instance, **kwargs):
    """
    Создание, смена статуса или удаление бронирования меняет занятость слотов
    """
    AvailabilityService.handle_booking_change(instance)
