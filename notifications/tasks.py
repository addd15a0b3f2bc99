from celery import shared_task

from .models import Notification


@shared_task
def create_notification(user_id, type, title, message, metadata=None):
    notification = Notification.objects.create(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        metadata=metadata or {},
    )
    return notification.pk
