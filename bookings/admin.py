from django.contrib import admin
from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ['user', 'resource_kind', 'lab', 'equipment', 'starts_at', 'ends_at', 'status', 'created_at']
    list_filter = ['status', 'resource_kind', 'created_at']
    search_fields = ['user__email', 'user__name', 'lab__name', 'equipment__name']
    ordering = ['-created_at']
    readonly_fields = ['created_at', 'updated_at']
