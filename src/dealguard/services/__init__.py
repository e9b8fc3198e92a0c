"""
dealguard.services

Service layer (transaction owners).

Responsibilities:
- Apply access rules and business rules on top of repositories.
- Write audit events and commit; every public operation is one unit of work.
"""

# Package marker.
