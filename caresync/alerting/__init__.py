"""Alert evaluation and fan-out."""

from caresync.alerting.checker import AlertChecker
from caresync.alerting.evaluator import evaluate, recipient_qualifies
from caresync.alerting.fanout import NotificationFanout

__all__ = ["AlertChecker", "NotificationFanout", "evaluate", "recipient_qualifies"]
