import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Lab',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255, verbose_name='Название лаборатории')),
                ('location', models.CharField(max_length=500, verbose_name='Местоположение')),
                ('lab_type', models.CharField(blank=True, max_length=100, verbose_name='Тип лаборатории')),
                ('capacity', models.IntegerField(default=1, help_text='Максимальное количество человек', validators=[django.core.validators.MinValueValidator(1)], verbose_name='Вместимость')),
                ('is_active', models.BooleanField(default=True, help_text='Неактивные лаборатории нельзя бронировать', verbose_name='Активна')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Дата создания')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Дата обновления')),
            ],
            options={
                'verbose_name': 'Лаборатория',
                'verbose_name_plural': 'Лаборатории',
                'db_table': 'labs',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['is_active', 'created_at'], name='labs_active_created_idx'),
                    models.Index(fields=['location'], name='labs_location_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Equipment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255, verbose_name='Название')),
                ('serial_number', models.CharField(max_length=100, unique=True, verbose_name='Серийный номер')),
                ('category', models.CharField(blank=True, max_length=100, verbose_name='Категория')),
                ('status', models.CharField(choices=[('available', 'Available'), ('in_use', 'In use'), ('maintenance', 'Maintenance'), ('retired', 'Retired')], default='available', max_length=20, verbose_name='Состояние')),
                ('is_active', models.BooleanField(default=True, verbose_name='Активно')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Дата создания')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Дата обновления')),
                ('lab', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='equipment', to='resources.lab', verbose_name='Лаборатория')),
            ],
            options={
                'verbose_name': 'Оборудование',
                'verbose_name_plural': 'Оборудование',
                'db_table': 'equipment',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['is_active', 'status'], name='equipment_active_status_idx'),
                    models.Index(fields=['lab', 'is_active'], name='equipment_lab_active_idx'),
                ],
            },
        ),
    ]
