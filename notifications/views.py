from django.shortcuts import get_object_or_404
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core.pagination import paginate

from .models import Notification
from .serializers import NotificationSerializer


class NotificationViewSet(viewsets.ViewSet):
    """
    Уведомления текущего пользователя
    """
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        return Notification.objects.filter(user=self.request.user)

    def list(self, request):
        """
        GET /notifications?unread_only=true&type=booking&page=1&limit=10
        """
        queryset = self.get_queryset()
        if request.query_params.get('unread_only') == 'true':
            queryset = queryset.filter(read=False)
        notification_type = request.query_params.get('type')
        if notification_type and notification_type != 'all':
            queryset = queryset.filter(type=notification_type)

        page, pagination = paginate(queryset, request.query_params, default_limit=10)
        return Response({
            'data': NotificationSerializer(page, many=True).data,
            'pagination': pagination,
        })

    @action(detail=False, methods=['get'], url_path='unread-count')
    def unread_count(self, request):
        return Response({'data': {'count': self.get_queryset().filter(read=False).count()}})

    @action(detail=True, methods=['post'], url_path='read')
    def mark_read(self, request, pk=None):
        notification = get_object_or_404(self.get_queryset(), pk=pk)
        notification.read = True
        notification.save(update_fields=['read'])
        return Response({'data': NotificationSerializer(notification).data})

    @action(detail=False, methods=['post'], url_path='read-all')
    def mark_all_read(self, request):
        updated = self.get_queryset().filter(read=False).update(read=True)
        return Response({'message': 'All notifications marked as read', 'data': {'updated': updated}})

    def destroy(self, request, pk=None):
        notification = get_object_or_404(self.get_queryset(), pk=pk)
        notification.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)
