from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q

from resources.models import Equipment, Lab


class Booking(models.Model):
    RESOURCE_KIND_CHOICES = [
        ('lab', 'Lab'),
        ('equipment', 'Equipment'),
    ]
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('confirmed', 'Confirmed'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]
    # Статусы, которые занимают слот
    ACTIVE_STATUSES = ('pending', 'confirmed')

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='bookings')
    resource_kind = models.CharField(max_length=20, choices=RESOURCE_KIND_CHOICES)
    lab = models.ForeignKey(Lab, on_delete=models.PROTECT, null=True, blank=True, related_name='bookings')
    equipment = models.ForeignKey(
        Equipment, on_delete=models.PROTECT, null=True, blank=True, related_name='bookings'
    )
    starts_at = models.DateTimeField()
    ends_at = models.DateTimeField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    purpose = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'status'], name='booking_user_status_idx'),
            models.Index(fields=['lab', 'starts_at'], name='booking_lab_starts_idx'),
            models.Index(fields=['equipment', 'starts_at'], name='booking_equipment_starts_idx'),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(ends_at__gt=F('starts_at')), name='booking_ends_after_starts'),
        ]
        ordering = ['starts_at']

    @property
    def resource(self):
        return self.lab if self.resource_kind == 'lab' else self.equipment

    @property
    def resource_id(self):
        return self.lab_id if self.resource_kind == 'lab' else self.equipment_id

    def clean(self):
        if self.starts_at >= self.ends_at:
            raise ValidationError('Start time must be before end time')

    def __str__(self):
        return f"{self.resource_kind} #{self.resource_id}: {self.starts_at:%Y-%m-%d %H:%M}-{self.ends_at:%H:%M} ({self.status})"
