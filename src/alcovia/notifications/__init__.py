"""Real-time push notifications to connected students."""

from .dispatcher import NotificationDispatcher
from .events import InterventionAssigned, PushEvent, StatusChanged

__all__ = ["NotificationDispatcher", "PushEvent", "StatusChanged", "InterventionAssigned"]
