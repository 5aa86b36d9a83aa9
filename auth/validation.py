"""
auth/validation.py -- Registration input and its field-level validation.

validate_registration() returns a list of FieldError values instead of
raising, so the session service can hand every problem back at once.
Uniqueness and role checks are not done here; they need the store.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from auth.results import FieldError

USERNAME_MIN, USERNAME_MAX = 3, 50
PASSWORD_MIN, PASSWORD_MAX = 8, 72  # bcrypt ignores bytes past 72
FULL_NAME_MIN, FULL_NAME_MAX = 2, 100
EMAIL_MAX = 100

_USERNAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^[0-9+()\- ]{4,20}$")


@dataclass
class RegistrationInput:
    username: str
    email: str
    password: str
    full_name: str
    department: str | None = None
    position: str | None = None
    phone_number: str | None = None
    role_name: str | None = None

    def normalized(self) -> RegistrationInput:
        """Trim identifiers and collapse blank optionals to None. The password is left as typed."""

        def _opt(value: str | None) -> str | None:
            if value is None:
                return None
            value = value.strip()
            return value or None

        return replace(
            self,
            username=self.username.strip(),
            email=self.email.strip(),
            full_name=self.full_name.strip(),
            department=_opt(self.department),
            position=_opt(self.position),
            phone_number=_opt(self.phone_number),
            role_name=_opt(self.role_name),
        )

    def __repr__(self) -> str:
        return f"RegistrationInput(username={self.username!r}, email={self.email!r}, role_name={self.role_name!r})"


def validate_registration(data: RegistrationInput) -> list[FieldError]:
    """Check a normalized RegistrationInput. An empty list means the input is acceptable."""
    errors: list[FieldError] = []

    if not data.username:
        errors.append(FieldError("username", "Username is required."))
    elif not USERNAME_MIN <= len(data.username) <= USERNAME_MAX:
        errors.append(FieldError("username", f"Username must be {USERNAME_MIN}-{USERNAME_MAX} characters."))
    elif not _USERNAME_RE.match(data.username):
        errors.append(FieldError("username", "Username may contain letters, digits, '.', '_' and '-' only."))

    if not data.email:
        errors.append(FieldError("email", "Email is required."))
    elif len(data.email) > EMAIL_MAX or not _EMAIL_RE.match(data.email):
        errors.append(FieldError("email", "Email address is not valid."))

    if not data.password:
        errors.append(FieldError("password", "Password is required."))
    elif len(data.password) < PASSWORD_MIN:
        errors.append(FieldError("password", f"Password must be at least {PASSWORD_MIN} characters."))
    elif len(data.password.encode("utf-8")) > PASSWORD_MAX:
        errors.append(FieldError("password", f"Password must be at most {PASSWORD_MAX} bytes."))

    if not data.full_name:
        errors.append(FieldError("full_name", "Full name is required."))
    elif not FULL_NAME_MIN <= len(data.full_name) <= FULL_NAME_MAX:
        errors.append(FieldError("full_name", f"Full name must be {FULL_NAME_MIN}-{FULL_NAME_MAX} characters."))

    if data.phone_number is not None and not _PHONE_RE.match(data.phone_number):
        errors.append(FieldError("phone_number", "Phone number is not valid."))

    return errors
