from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .serializers import BookingProposalSerializer, BookingSerializer, BookingStatusSerializer
from .services import BookingService, parse_interval


class BookingViewSet(viewsets.ViewSet):
    """
    Бронирования лабораторий и оборудования
    """
    lookup_value_regex = r"\d+"

    def list(self, request):
        """
        GET /bookings?status=&resource_kind=&lab_id=&equipment_id=&start_date=&end_date=&page=&limit=
        """
        bookings, pagination = BookingService.list_bookings(request.user, request.query_params)
        return Response({
            'data': BookingSerializer(bookings, many=True).data,
            'pagination': pagination,
        })

    def retrieve(self, request, pk=None):
        booking = BookingService.get_booking(pk, request.user)
        return Response({'data': BookingSerializer(booking).data})

    def create(self, request):
        """
        POST /bookings - заявка на слот, создаётся в статусе pending
        """
        serializer = BookingProposalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        start, end = parse_interval(
            starts_at=data.get('starts_at'),
            ends_at=data.get('ends_at'),
            date=data.get('date'),
            start_time=data.get('start_time'),
            end_time=data.get('end_time'),
        )
        booking = BookingService.propose_booking(
            data['resource_kind'], data['resource_id'], start, end, request.user, data['purpose']
        )
        return Response(
            {'message': 'Booking created successfully', 'data': BookingSerializer(booking).data},
            status=status.HTTP_201_CREATED,
        )

    def destroy(self, request, pk=None):
        """
        DELETE /bookings/{id} - отмена бронирования
        """
        booking = BookingService.cancel_booking(pk, request.user)
        return Response({'message': 'Booking cancelled successfully', 'data': BookingSerializer(booking).data})

    @action(detail=True, methods=['patch'], url_path='status')
    def set_status(self, request, pk=None):
        serializer = BookingStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = BookingService.update_status(pk, serializer.validated_data['status'], request.user)
        return Response({'message': 'Booking status updated', 'data': BookingSerializer(booking).data})

    @action(detail=False, methods=['get'])
    def stats(self, request):
        return Response({'data': BookingService.get_stats(request.user)})

    @action(detail=False, methods=['get'])
    def upcoming(self, request):
        bookings = BookingService.get_upcoming(request.user, request.query_params.get('limit', 10))
        return Response({'data': BookingSerializer(bookings, many=True).data})
