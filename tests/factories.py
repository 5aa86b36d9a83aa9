"""
tests/factories.py -- Builders shared by the unit and integration tests.
"""

from __future__ import annotations

import bcrypt

from auth.models import Identity
from auth.roles import RoleName
from auth.store import CredentialStore


def fast_hash(plain: str) -> str:
    """bcrypt with 4 rounds. verify_password() accepts any work factor."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")


def make_identity(
    store: CredentialStore,
    username: str,
    password: str = "correct-horse",
    roles: tuple[RoleName, ...] = (RoleName.EMPLOYEE,),
    **fields,
) -> Identity:
    """Insert an identity directly through the store and attach roles.

    The catalog must already be seeded (the service fixture does this).
    """
    identity = store.save(
        Identity(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            password_hash=fast_hash(password),
            full_name=fields.pop("full_name", username.title()),
            **fields,
        )
    )
    for role in roles:
        assert store.assign_role(identity.id, role.value)
    return identity
