"""
dealguard.auth

Identity and access-control package.

Responsibilities:
- The authenticated caller identity (`Principal`) handed to services.
- Deal-level access rules (staff, creator, party member).
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Token verification belongs to the external identity provider and the transport
# layer; services only ever see an already-authenticated Principal.
