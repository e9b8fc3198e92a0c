"""
dealguard.domain

Pure business rules (no I/O).

Responsibilities:
- Deal lifecycle transition table and guards.
- Milestone approval quorum and negotiation outcome.
- Service-tier fee calculation.
"""

# Package marker.
