from rest_framework import permissions


class IsLabStaff(permissions.BasePermission):
    """
    Разрешение для персонала лабораторий (admin, lab_assistant, lab_technician)
    """
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_lab_staff)
