from rest_framework import serializers

from .models import Booking
from .services import STAFF_STATUSES


class BookingSerializer(serializers.ModelSerializer):
    resource_id = serializers.IntegerField(read_only=True)
    lab_name = serializers.CharField(source='lab.name', read_only=True, default=None)
    equipment_name = serializers.CharField(source='equipment.name', read_only=True, default=None)
    user_name = serializers.CharField(source='user.name', read_only=True)
    user_email = serializers.EmailField(source='user.email', read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id', 'resource_kind', 'resource_id', 'lab', 'lab_name', 'equipment', 'equipment_name',
            'user', 'user_name', 'user_email', 'starts_at', 'ends_at', 'status', 'purpose',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class BookingProposalSerializer(serializers.Serializer):
    """
    Заявка на бронирование: date + start_time/end_time или starts_at/ends_at.
    Сами значения разбирает BookingService.
    """
    resource_kind = serializers.ChoiceField(choices=[kind for kind, _ in Booking.RESOURCE_KIND_CHOICES])
    resource_id = serializers.IntegerField(min_value=1)
    date = serializers.CharField(required=False)
    start_time = serializers.CharField(required=False)
    end_time = serializers.CharField(required=False)
    starts_at = serializers.CharField(required=False)
    ends_at = serializers.CharField(required=False)
    purpose = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')


class BookingStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=STAFF_STATUSES)
