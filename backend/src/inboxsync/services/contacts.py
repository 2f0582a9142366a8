"""Phone number normalization and contact name lookup."""

import re

from inbox_models import Contact


def digits(phone: str) -> str:
    return re.sub(r"\D", "", phone)


def last10(phone: str) -> str:
    """Last ten digits, which is how US numbers are compared across formats."""
    return digits(phone)[-10:]


def phone_variants(phone: str) -> list[str]:
    d10 = last10(phone)
    return [phone, d10, f"+1{d10}", f"1{d10}"]


def phones_match(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return last10(a) == last10(b) and last10(a) != ""


class ContactDirectory:
    """Maps phone numbers, in any common format, to contact names."""

    def __init__(self, contacts: list[Contact] | None = None):
        self._names: dict[str, str] = {}
        for contact in contacts or []:
            self.add(contact.phone_number, contact.name)

    def __len__(self) -> int:
        return len(self._names)

    def add(self, phone: str, name: str | None, overwrite: bool = False) -> None:
        if not phone or not name:
            return
        for key in phone_variants(phone):
            if overwrite or key not in self._names:
                self._names[key] = name

    def name_for(self, phone: str) -> str | None:
        for key in phone_variants(phone):
            if key in self._names:
                return self._names[key]
        target = last10(phone)
        if not target:
            return None
        for key, name in self._names.items():
            if last10(key) == target:
                return name
        return None

    def display_name(self, phone: str) -> str:
        return self.name_for(phone) or phone
