"""
Section validators for draft commits.

apply_draft(flow, section) looks up the validator registered for the edited
section and commits only when it reports no errors. Sections without a
validator always pass.
"""

import re
from typing import Any, Callable

SectionValidator = Callable[[dict[str, Any]], list[str]]

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_GUEST_COUNT = 10


def validate_contact(state: dict[str, Any]) -> list[str]:
    contact = state.get("contact") or {}
    errors = []

    if not contact.get("name"):
        errors.append("Contact name required")
    email = contact.get("email") or ""
    if not email:
        errors.append("Email required")
    elif not EMAIL_PATTERN.match(email):
        errors.append("Valid email required")
    phone_digits = re.sub(r"[^\d]", "", contact.get("phone") or "")
    if not phone_digits:
        errors.append("Phone number required")
    elif len(phone_digits) < 10:
        errors.append("Phone number must have at least 10 digits")

    return errors


def validate_delivery(state: dict[str, Any]) -> list[str]:
    contact = state.get("contact") or {}
    address = contact.get("deliveryAddress") or {}
    errors = []

    if not address.get("street"):
        errors.append("Delivery address required")
    if not address.get("city"):
        errors.append("City required")
    if not address.get("state"):
        errors.append("State required")
    zip_code = address.get("zip") or ""
    if not zip_code:
        errors.append("ZIP code required")
    elif not re.match(r"^\d{5}(-\d{4})?$", zip_code):
        errors.append("Invalid ZIP code format")
    if not contact.get("deliveryDate"):
        errors.append("Delivery date required")

    return errors


def _guest_count(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def validate_event_details(state: dict[str, Any]) -> list[str]:
    errors = []
    # Form input may send the count as a string
    if _guest_count(state.get("guestCount")) < MIN_GUEST_COUNT:
        errors.append(f"Guest count must be at least {MIN_GUEST_COUNT}")
    if not state.get("eventType"):
        errors.append("Please select an event type")
    return errors


def validate_package(state: dict[str, Any]) -> list[str]:
    if state.get("selectedPackage") or state.get("selectedTemplate"):
        return []
    return ["Please select a package"]


SECTION_VALIDATORS: dict[str, SectionValidator] = {
    "contact": validate_contact,
    "delivery": validate_delivery,
    "event-details": validate_event_details,
    "package": validate_package,
}


def validate_section(
    section: str | None,
    state: dict[str, Any],
    validators: dict[str, SectionValidator] | None = None,
) -> list[str]:
    validator = (validators if validators is not None else SECTION_VALIDATORS).get(section or "")
    if validator is None:
        return []
    return validator(state)


def register_section_validator(section: str, validator: SectionValidator) -> None:
    """Add or replace the validator apply_draft runs for a section."""
    SECTION_VALIDATORS[section] = validator
