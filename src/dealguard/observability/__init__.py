"""
dealguard.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Operation context propagation for consistent log enrichment.
"""

# Package marker.
