"""Chat and push delivery for alert fan-out."""

from caresync.notifications.base import Notifier
from caresync.notifications.expo import ExpoPushClient
from caresync.notifications.notifier import DefaultNotifier

__all__ = ["Notifier", "ExpoPushClient", "DefaultNotifier"]
