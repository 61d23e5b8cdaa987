"""Authenticated user profile handed over by the identity provider."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Identity:
    """
    Attributes:
        uid: Stable user id; remote records are keyed by it
        display_name: Prefills contact.name
        email: Prefills contact.email
        phone_number: Prefills contact.phone
    """
    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None

    def contact_prefill(self) -> dict[str, str]:
        fields = {
            "name": self.display_name,
            "email": self.email,
            "phone": self.phone_number,
        }
        return {key: value for key, value in fields.items() if value}
