from .notification import DeliveryStatus, NotificationDelivery, NotificationKind

__all__ = ['DeliveryStatus', 'NotificationDelivery', 'NotificationKind']
