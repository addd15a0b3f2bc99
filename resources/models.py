from django.core.validators import MinValueValidator
from django.db import models


class Lab(models.Model):
    """Лаборатория - бронируется целиком"""

    name = models.CharField(
        max_length=255,
        verbose_name='Название лаборатории'
    )
    location = models.CharField(
        max_length=500,
        verbose_name='Местоположение'
    )
    lab_type = models.CharField(
        max_length=100,
        blank=True,
        verbose_name='Тип лаборатории'
    )
    capacity = models.IntegerField(
        validators=[MinValueValidator(1)],
        default=1,
        verbose_name='Вместимость',
        help_text='Максимальное количество человек'
    )
    is_active = models.BooleanField(
        default=True,
        verbose_name='Активна',
        help_text='Неактивные лаборатории нельзя бронировать'
    )
    created_at = models.DateTimeField(auto_now_add=True, verbose_name='Дата создания')
    updated_at = models.DateTimeField(auto_now=True, verbose_name='Дата обновления')

    class Meta:
        db_table = 'labs'
        verbose_name = 'Лаборатория'
        verbose_name_plural = 'Лаборатории'
        indexes = [
            models.Index(fields=['is_active', 'created_at'], name='labs_active_created_idx'),
            models.Index(fields=['location'], name='labs_location_idx'),
        ]
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.name} ({self.location})"


class Equipment(models.Model):
    """Единица оборудования, принадлежит лаборатории"""

    STATUS_CHOICES = [
        ('available', 'Available'),
        ('in_use', 'In use'),
        ('maintenance', 'Maintenance'),
        ('retired', 'Retired'),
    ]

    lab = models.ForeignKey(
        Lab,
        on_delete=models.PROTECT,
        related_name='equipment',
        verbose_name='Лаборатория'
    )
    name = models.CharField(max_length=255, verbose_name='Название')
    serial_number = models.CharField(max_length=100, unique=True, verbose_name='Серийный номер')
    category = models.CharField(max_length=100, blank=True, verbose_name='Категория')
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='available',
        verbose_name='Состояние'
    )
    is_active = models.BooleanField(default=True, verbose_name='Активно')
    created_at = models.DateTimeField(auto_now_add=True, verbose_name='Дата создания')
    updated_at = models.DateTimeField(auto_now=True, verbose_name='Дата обновления')

    class Meta:
        db_table = 'equipment'
        verbose_name = 'Оборудование'
        verbose_name_plural = 'Оборудование'
        indexes = [
            models.Index(fields=['is_active', 'status'], name='equipment_active_status_idx'),
            models.Index(fields=['lab', 'is_active'], name='equipment_lab_active_idx'),
        ]
        ordering = ['-created_at']

    @property
    def is_bookable(self):
        return self.is_active and self.status == 'available'

    def __str__(self):
        return f"{self.name} [{self.serial_number}]"
