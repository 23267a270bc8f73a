import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

from distress_monitor.safety.contacts import EmergencyContactManager
from distress_monitor.safety.interfaces import MessagingGateway
from distress_monitor.safety.location import LocationService, map_url
from distress_monitor.safety.models import AlertType, EmergencyAlert, Location, new_id
from distress_monitor.safety.store import AlertHistory
from distress_monitor.safety.timers import Scheduler

log = logging.getLogger("safety.dispatch")

CHANNEL_EMERGENCY_SERVICES = "emergency_services"
CHANNEL_CONTACTS = "contacts"
CHANNEL_LOCAL_AUTHORITIES = "local_authorities"


def _encode(text: str) -> str:
    # same escaping as a browser's encodeURIComponent
    return quote(text, safe="-_.!~*'()")


def _display_time(iso_timestamp: str) -> str:
    return datetime.fromisoformat(iso_timestamp).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_emergency_message(alert: EmergencyAlert, app_name: str = "Mentor AI") -> str:
    lines = [
        "🚨 EMERGENCY ALERT 🚨",
        "",
        f"Type: {alert.type.value.upper()}",
        f"Time: {_display_time(alert.timestamp)}",
    ]
    if alert.location is not None:
        lines.append(f"Location: {alert.location.latitude:.6f}, {alert.location.longitude:.6f}")
        lines.append(f"Map: {map_url(alert.location)}")
    else:
        lines.append("Location: Unable to determine")
    if alert.additional_info:
        lines += ["", f"Additional Info: {alert.additional_info}"]
    lines += [
        "",
        f"This is an automated emergency alert from {app_name}. Please respond immediately.",
        "",
        "---",
        f"Sent via {app_name} Emergency System",
    ]
    return "\n".join(lines)


@dataclass
class DispatchResult:
    alert: EmergencyAlert
    channels: Dict[str, bool] = field(default_factory=dict)


class EmergencyAlertDispatcher:
    """
    Records an alert and fans it out to emergency services, personal contacts
    and local authorities.

    Channels are best effort and independent: a failing channel is logged and
    the remaining ones still run. The gateway is fire-and-forget, so the alert
    status stays ``sent``.
    """

    def __init__(
        self,
        contacts: EmergencyContactManager,
        location: LocationService,
        gateway: MessagingGateway,
        history: AlertHistory,
        scheduler: Scheduler,
        emergency_number: str = "911",
        local_authority_numbers: Sequence[str] = ("911", "112"),
        app_name: str = "Mentor AI",
    ):
        self.contacts = contacts
        self.location = location
        self.gateway = gateway
        self.history = history
        self.scheduler = scheduler
        self.emergency_number = emergency_number
        self.local_authority_numbers: List[str] = list(local_authority_numbers)
        self.app_name = app_name

    async def send_direct_emergency_alert(
        self, alert_type: AlertType = AlertType.GENERAL, additional_info: Optional[str] = None
    ) -> bool:
        return await self.dispatch(alert_type, additional_info) is not None

    async def dispatch(
        self, alert_type: AlertType = AlertType.GENERAL, additional_info: Optional[str] = None
    ) -> Optional[DispatchResult]:
        location = await self.location.get_current_location()
        try:
            alert = self._record_alert(AlertType(alert_type), location, additional_info)
        except Exception:
            log.exception("Failed to create emergency alert")
            return None

        message = format_emergency_message(alert, self.app_name)
        result = DispatchResult(alert)
        channels: Dict[str, Callable[[], None]] = {
            CHANNEL_EMERGENCY_SERVICES: lambda: self._to_emergency_services(message),
            CHANNEL_CONTACTS: lambda: self._to_contacts(alert, message),
            CHANNEL_LOCAL_AUTHORITIES: lambda: self._to_local_authorities(message),
        }
        for name, send in channels.items():
            try:
                send()
                result.channels[name] = True
                log.info("Emergency alert %s sent to %s", alert.id, name)
            except Exception:
                result.channels[name] = False
                log.exception("Failed to send alert %s to %s", alert.id, name)
        return result

    def get_alert_history(self) -> List[EmergencyAlert]:
        return self.history.list()

    def clear_alert_history(self) -> None:
        self.history.clear()

    def _record_alert(
        self, alert_type: AlertType, location: Optional[Location], additional_info: Optional[str]
    ) -> EmergencyAlert:
        now = self.scheduler.now()
        alert = EmergencyAlert(
            id=new_id("alert", now),
            type=alert_type,
            timestamp=datetime.fromtimestamp(now / 1000.0, tz=timezone.utc).isoformat(),
            location=location,
            additional_info=additional_info or "",
        )
        self.history.append(alert)
        log.info("Emergency alert %s recorded (type=%s, located=%s)", alert.id, alert_type.value, location is not None)
        return alert

    def _to_emergency_services(self, message: str) -> None:
        self.gateway.open(f"tel:{self.emergency_number}")
        self.gateway.open(f"sms:{self.emergency_number}?body={_encode(message)}")

    def _to_contacts(self, alert: EmergencyAlert, message: str) -> None:
        if alert.location is not None:
            where = f"{alert.location.latitude:.6f}, {alert.location.longitude:.6f}"
        else:
            where = "unavailable"
        body = f"{message}\n\nMy location: {where}\nTime: {_display_time(alert.timestamp)}"
        subject = f"🚨 EMERGENCY ALERT - {alert.type.value.upper()}"

        contacts = self.contacts.get_active_contacts()
        # every SMS goes out before any email
        targets = [(c, f"sms:{c.phone}?body={_encode(body)}") for c in contacts]
        targets += [
            (c, f"mailto:{c.email}?subject={_encode(subject)}&body={_encode(body)}")
            for c in contacts if c.email
        ]

        failures = 0
        for contact, target in targets:
            try:
                self.gateway.open(target)
            except Exception as exc:
                failures += 1
                log.error("Failed to reach contact %s: %s", contact.id, exc)
        if failures:
            raise RuntimeError(f"{failures} contact message(s) could not be opened")

    def _to_local_authorities(self, message: str) -> None:
        for number in self.local_authority_numbers:
            self.gateway.open(f"sms:{number}?body={_encode(message)}")
