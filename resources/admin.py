from django.contrib import admin
from .models import Equipment, Lab


@admin.register(Lab)
class LabAdmin(admin.ModelAdmin):
    list_display = ['name', 'location', 'lab_type', 'capacity', 'is_active', 'created_at']
    list_filter = ['is_active', 'lab_type']
    search_fields = ['name', 'location']


@admin.register(Equipment)
class EquipmentAdmin(admin.ModelAdmin):
    list_display = ['name', 'serial_number', 'lab', 'category', 'status', 'is_active']
    list_filter = ['status', 'is_active', 'category']
    search_fields = ['name', 'serial_number']
