from datetime import datetime

from django.core.cache import cache
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.exceptions import InvalidInput, NotFound

from .models import Equipment, Lab
from .permissions import IsLabStaff
from .serializers import EquipmentSerializer, EquipmentWriteSerializer, LabSerializer, LabWriteSerializer
from .services import AvailabilityService

# Кеш списка и карточки ресурса, секунд
RESOURCE_CACHE_TTL = 60


class BaseResourceViewSet(viewsets.ViewSet):
    """
    Общий ViewSet для лабораторий и оборудования
    """
    model = None
    resource_kind = None
    serializer_class = None
    write_serializer_class = None
    filter_params = ()
    lookup_value_regex = r"\d+"

    def get_permissions(self):
        """
        Изменения доступны только персоналу лабораторий
        """
        if self.action in ['create', 'update', 'partial_update', 'destroy']:
            permission_classes = [IsLabStaff]
        else:
            permission_classes = [IsAuthenticated]
        return [permission() for permission in permission_classes]

    @property
    def list_cache_key(self):
        return f'active_{self.resource_kind}_list'

    def detail_cache_key(self, pk):
        return f'{self.resource_kind}_detail_{pk}'

    def get_queryset(self):
        return self.model.objects.all()

    def get_object(self, pk):
        obj = self.get_queryset().filter(pk=pk).first()
        if obj is None:
            raise NotFound(f'{self.resource_kind.capitalize()} not found')
        return obj

    def filter_list(self, queryset, params):
        return queryset

    def list(self, request):
        """
        GET /{kind} - список активных ресурсов; с фильтрами кеш не используется
        """
        filtered = any(request.query_params.get(name) for name in self.filter_params)
        if not filtered:
            cached_data = cache.get(self.list_cache_key)
            if cached_data is not None:
                return Response({'data': cached_data})

        queryset = self.get_queryset().filter(is_active=True).order_by('-created_at')
        queryset = self.filter_list(queryset, request.query_params)
        data = self.serializer_class(queryset, many=True).data

        if not filtered:
            cache.set(self.list_cache_key, data, RESOURCE_CACHE_TTL)
        return Response({'data': data})

    def retrieve(self, request, pk=None):
        obj = self.get_object(pk)
        if not obj.is_active and not request.user.is_lab_staff:
            raise NotFound(f'{self.resource_kind.capitalize()} not found or inactive')

        cache_key = self.detail_cache_key(obj.pk)
        cached_data = cache.get(cache_key)
        if cached_data is not None:
            return Response({'data': cached_data})

        data = self.serializer_class(obj).data
        cache.set(cache_key, data, RESOURCE_CACHE_TTL)
        return Response({'data': data})

    def create(self, request):
        serializer = self.write_serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        obj = serializer.save()

        cache.delete(self.list_cache_key)
        return Response({'data': self.serializer_class(obj).data}, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None):
        return self._save(request, pk, partial=False)

    def partial_update(self, request, pk=None):
        return self._save(request, pk, partial=True)

    def _save(self, request, pk, partial):
        obj = self.get_object(pk)
        serializer = self.write_serializer_class(obj, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        obj = serializer.save()

        self._invalidate_resource_caches(obj.pk)
        return Response({'data': self.serializer_class(obj).data})

    def destroy(self, request, pk=None):
        """
        DELETE /{kind}/{id} - деактивация вместо удаления, история бронирований сохраняется
        """
        obj = self.get_object(pk)
        obj.is_active = False
        obj.save(update_fields=['is_active', 'updated_at'])

        self._invalidate_resource_caches(obj.pk)
        return Response({'message': f'{self.resource_kind.capitalize()} deactivated successfully'})

    @action(detail=True, methods=['get'], url_path='availability')
    def availability(self, request, pk=None):
        """
        GET /{kind}/{id}/availability?date=YYYY-MM-DD
        """
        date_str = request.query_params.get('date')
        if not date_str:
            raise InvalidInput('date parameter is required (format: YYYY-MM-DD)')
        try:
            date = datetime.strptime(date_str, '%Y-%m-%d').date()
        except ValueError:
            raise InvalidInput('Invalid date format, expected YYYY-MM-DD')

        if date < timezone.localdate():
            raise InvalidInput('Cannot request availability for a past date')

        return Response({
            'data': AvailabilityService.get_resource_availability(self.resource_kind, pk, date)
        })

    def _invalidate_resource_caches(self, pk):
        cache.delete_many([self.list_cache_key, self.detail_cache_key(pk)])


class LabViewSet(BaseResourceViewSet):
    model = Lab
    resource_kind = 'lab'
    serializer_class = LabSerializer
    write_serializer_class = LabWriteSerializer
    filter_params = ('lab_type', 'location')

    def filter_list(self, queryset, params):
        if params.get('lab_type'):
            queryset = queryset.filter(lab_type=params['lab_type'])
        if params.get('location'):
            queryset = queryset.filter(location__icontains=params['location'])
        return queryset


class EquipmentViewSet(BaseResourceViewSet):
    model = Equipment
    resource_kind = 'equipment'
    serializer_class = EquipmentSerializer
    write_serializer_class = EquipmentWriteSerializer
    filter_params = ('lab_id', 'status', 'category')

    def get_queryset(self):
        return Equipment.objects.select_related('lab')

    def filter_list(self, queryset, params):
        if params.get('lab_id'):
            try:
                queryset = queryset.filter(lab_id=int(params['lab_id']))
            except ValueError:
                raise InvalidInput('lab_id must be an integer')
        if params.get('status'):
            queryset = queryset.filter(status=params['status'])
        if params.get('category'):
            queryset = queryset.filter(category=params['category'])
        return queryset
