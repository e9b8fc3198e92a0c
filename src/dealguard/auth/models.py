"""
dealguard.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`) passed into services.
"""

from __future__ import annotations

from dataclasses import dataclass

ADMIN_ROLES = frozenset({"super_admin", "admin"})
STAFF_ROLES = ADMIN_ROLES | {"case_officer"}


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity.
    """

    subject: str
    roles: frozenset[str] = frozenset()
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return not ADMIN_ROLES.isdisjoint(self.roles)

    @property
    def is_staff(self) -> bool:
        # Admins and case officers may operate on every deal.
        return not STAFF_ROLES.isdisjoint(self.roles)


SYSTEM = Principal(subject="SYSTEM", roles=frozenset({"admin"}))
EMAIL_SYSTEM = Principal(subject="EMAIL_SYSTEM")


# --- Module Notes -----------------------------------------------------------
# SYSTEM is used for automatic transitions (deal activation, readiness checks);
# EMAIL_SYSTEM attributes evidence ingested from the inbound mailbox.
