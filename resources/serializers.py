from rest_framework import serializers

from .models import Equipment, Lab


class LabSerializer(serializers.ModelSerializer):
    """Сериализатор для лаборатории"""
    equipment_count = serializers.SerializerMethodField()

    class Meta:
        model = Lab
        fields = [
            'id', 'name', 'location', 'lab_type', 'capacity',
            'equipment_count', 'is_active', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_equipment_count(self, obj):
        return obj.equipment.filter(is_active=True).count()


class LabWriteSerializer(serializers.ModelSerializer):
    """Сериализатор для создания и обновления лаборатории"""

    class Meta:
        model = Lab
        fields = ['name', 'location', 'lab_type', 'capacity', 'is_active']

    def validate_capacity(self, value):
        if value < 1:
            raise serializers.ValidationError('Capacity must be at least 1')
        return value


class EquipmentSerializer(serializers.ModelSerializer):
    """Сериализатор для оборудования"""
    lab_name = serializers.CharField(source='lab.name', read_only=True)
    is_bookable = serializers.BooleanField(read_only=True)

    class Meta:
        model = Equipment
        fields = [
            'id', 'lab', 'lab_name', 'name', 'serial_number', 'category',
            'status', 'is_bookable', 'is_active', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class EquipmentWriteSerializer(serializers.ModelSerializer):
    """Сериализатор для создания и обновления оборудования"""

    class Meta:
        model = Equipment
        fields = ['lab', 'name', 'serial_number', 'category', 'status', 'is_active']

    def validate_lab(self, value):
        if not value.is_active:
            raise serializers.ValidationError('Lab not found or inactive')
        return value
