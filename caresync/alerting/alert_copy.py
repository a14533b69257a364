"""Title, body and severity for each alert type."""

from typing import NamedTuple, assert_never

from caresync.models.alerts import AlertSeverity, AlertType


class AlertCopy(NamedTuple):
    severity: AlertSeverity
    title: str
    message: str


def build_alert_copy(alert_type: AlertType, value: int, name: str) -> AlertCopy:
    match alert_type:
        case AlertType.URGENT_LOW:
            return AlertCopy(
                AlertSeverity.CRITICAL,
                f"🚨 Very Low — {name}",
                f"{name}'s glucose reading is {value} mg/dL. You may want to check in with them.",
            )
        case AlertType.LOW:
            return AlertCopy(
                AlertSeverity.URGENT,
                f"📉 Low Reading — {name}",
                f"{name}'s glucose is {value} mg/dL (below their range). You may want to check in.",
            )
        case AlertType.HIGH:
            return AlertCopy(
                AlertSeverity.WARNING,
                f"📈 High Reading — {name}",
                f"{name}'s glucose is {value} mg/dL (above their range).",
            )
        case AlertType.URGENT_HIGH:
            return AlertCopy(
                AlertSeverity.URGENT,
                f"🚨 Very High — {name}",
                f"{name}'s glucose is {value} mg/dL. You may want to check in with them.",
            )
        case AlertType.RAPID_DROP:
            return AlertCopy(
                AlertSeverity.URGENT,
                f"⬇️ Dropping Fast — {name}",
                f"{name}'s glucose is dropping quickly (now {value} mg/dL).",
            )
        case AlertType.RAPID_RISE:
            return AlertCopy(
                AlertSeverity.WARNING,
                f"⬆️ Rising Fast — {name}",
                f"{name}'s glucose is rising quickly (now {value} mg/dL).",
            )
        case _:
            assert_never(alert_type)
