"""Contact form validation and phone helpers."""

from __future__ import annotations

import re
from urllib.parse import quote

from pydantic import ValidationError

from visitrack.models import ContactData

__all__ = [
    "ContactValidationError",
    "build_contact",
    "extract_first_phone_number",
    "to_tel_href",
    "to_whatsapp_href",
    "validate_contact_form",
]

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_TOKEN_RE = re.compile(r"(\+?\d[\d\s-]{7,}\d)")
_MIN_NAME_LENGTH = 2


class ContactValidationError(ValueError):
    """Form input rejected; ``errors`` maps field name to message."""

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors


def _phone_error(phone_number: str) -> str | None:
    if not phone_number.strip():
        return "Phone number is required"
    try:
        ContactData(phone_number=phone_number)
    except ValidationError:
        return "Please enter a valid phone number"
    return None


def validate_contact_form(name: str, phone_number: str, email: str = "") -> dict[str, str]:
    """Return field-level errors; an empty dict means the form may be submitted."""
    errors: dict[str, str] = {}

    name = name.strip()
    if not name:
        errors["name"] = "Name is required"
    elif len(name) < _MIN_NAME_LENGTH:
        errors["name"] = "Name must be at least 2 characters long"

    phone_error = _phone_error(phone_number)
    if phone_error:
        errors["phone_number"] = phone_error

    email = email.strip()
    if email and not EMAIL_RE.match(email):
        errors["email"] = "Please enter a valid email address"

    return errors


def build_contact(name: str, phone_number: str, email: str = "") -> ContactData:
    """Validate form input and build the submission payload."""
    errors = validate_contact_form(name, phone_number, email)
    if errors:
        raise ContactValidationError(errors)
    return ContactData(
        phone_number=phone_number.strip(),
        name=name.strip() or None,
        email=email.strip() or None,
    )


def extract_first_phone_number(text: str) -> str | None:
    """First phone-like token in free text, digits only (keeps a leading +)."""
    match = _PHONE_TOKEN_RE.search(text)
    if not match:
        return None
    return re.sub(r"[^\d+]", "", match.group(1))


def to_tel_href(text: str) -> str | None:
    phone = extract_first_phone_number(text)
    if not phone:
        return None
    return f"tel:{phone}"


def to_whatsapp_href(text: str, message: str) -> str | None:
    phone = extract_first_phone_number(text)
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone.lstrip("+"))
    if not digits:
        return None
    encoded = quote(message, safe="!~*'()")
    return f"https://wa.me/{digits}?text={encoded}"

