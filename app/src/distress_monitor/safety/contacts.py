import json
import logging
import re
from typing import List, Optional

from distress_monitor.safety.interfaces import KeyValueStore
from distress_monitor.safety.models import EmergencyContact, new_id
from distress_monitor.safety.timers import Scheduler

logger = logging.getLogger(__name__)

CONTACTS_KEY = "emergency-contacts"
PHONE_RE = re.compile(r"^[\d\s\-\+\(\)]+$")

_UPDATABLE = {"name", "phone", "email", "relationship", "is_primary", "is_active"}


def _validate(name: str, phone: str) -> None:
    if not name or not name.strip() or not phone or not phone.strip():
        raise ValueError("Name and phone number are required")
    if not PHONE_RE.match(phone.strip()):
        raise ValueError(f"Invalid phone number: {phone!r}")


class EmergencyContactManager:
    """
    Persisted emergency contacts.

    At most one contact is primary. The first contact added becomes primary,
    and promoting any contact demotes the previous one in the same write.
    """

    def __init__(self, kv: KeyValueStore, scheduler: Scheduler):
        self.kv = kv
        self.scheduler = scheduler
        self._contacts: List[EmergencyContact] = self._load()

    def _load(self) -> List[EmergencyContact]:
        try:
            raw = self.kv.get(CONTACTS_KEY)
            if raw:
                return [EmergencyContact.from_dict(c) for c in json.loads(raw)]
        except Exception as exc:
            logger.warning("Failed to load emergency contacts: %s", exc)
        return []

    def _save(self) -> None:
        try:
            self.kv.set(CONTACTS_KEY, json.dumps([c.to_dict() for c in self._contacts]))
        except Exception as exc:
            logger.warning("Failed to save emergency contacts: %s", exc)

    def _make_primary(self, contact: EmergencyContact) -> None:
        for c in self._contacts:
            c.is_primary = c is contact
        contact.is_primary = True

    def add_contact(
        self,
        name: str,
        phone: str,
        relationship: str = "",
        email: Optional[str] = None,
        is_primary: bool = False,
        is_active: bool = True,
    ) -> str:
        _validate(name, phone)
        contact = EmergencyContact(
            id=new_id("contact", self.scheduler.now()),
            name=name.strip(),
            phone=phone.strip(),
            relationship=relationship,
            email=(email or "").strip() or None,
            is_primary=False,
            is_active=is_active,
        )
        promote = is_primary or not self._contacts
        self._contacts.append(contact)
        if promote:
            self._make_primary(contact)
        self._save()
        logger.info("Added emergency contact %s (primary=%s)", contact.id, contact.is_primary)
        return contact.id

    def update_contact(self, contact_id: str, **updates) -> bool:
        contact = self._find(contact_id)
        if contact is None:
            return False
        unknown = set(updates) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown contact fields: {sorted(unknown)}")
        _validate(updates.get("name", contact.name), updates.get("phone", contact.phone))

        for key, value in updates.items():
            if key == "is_primary":
                continue
            if key in ("name", "phone") and isinstance(value, str):
                value = value.strip()
            if key == "email":
                value = (value or "").strip() or None
            setattr(contact, key, value)

        if updates.get("is_primary"):
            self._make_primary(contact)
        elif "is_primary" in updates:
            contact.is_primary = False
        self._save()
        return True

    def remove_contact(self, contact_id: str) -> bool:
        contact = self._find(contact_id)
        if contact is None:
            return False
        self._contacts.remove(contact)
        self._save()
        logger.info("Removed emergency contact %s", contact_id)
        return True

    def get_contacts(self) -> List[EmergencyContact]:
        return list(self._contacts)

    def get_primary_contact(self) -> Optional[EmergencyContact]:
        return next((c for c in self._contacts if c.is_primary and c.is_active), None)

    def get_active_contacts(self) -> List[EmergencyContact]:
        return [c for c in self._contacts if c.is_active]

    def _find(self, contact_id: str) -> Optional[EmergencyContact]:
        return next((c for c in self._contacts if c.id == contact_id), None)
