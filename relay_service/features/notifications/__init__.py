"""Notifications: entitlement event consumer and the delivery queue."""

from relay_service.features.notifications.delivery import (
    DeliveryWorker,
    get_delivery_worker,
    start_delivery_worker,
    stop_delivery_worker,
)
from relay_service.features.notifications.handler import (
    AckAction,
    MalformedEventError,
    NotificationEventHandler,
    decode_event,
    process_message,
)
from relay_service.features.notifications.models import (
    Notification,
    NotificationDlq,
    NotificationReceipt,
    NotificationStatus,
)

__all__ = [
    "AckAction",
    "DeliveryWorker",
    "MalformedEventError",
    "Notification",
    "NotificationDlq",
    "NotificationEventHandler",
    "NotificationReceipt",
    "NotificationStatus",
    "decode_event",
    "get_delivery_worker",
    "process_message",
    "start_delivery_worker",
    "stop_delivery_worker",
]
