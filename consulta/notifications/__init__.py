"""Outbound notifications for booking events."""

from consulta.notifications.dispatcher import NotificationDispatcher

__all__ = ["NotificationDispatcher"]
