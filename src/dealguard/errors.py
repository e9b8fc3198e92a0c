"""
dealguard.errors

Domain exception hierarchy.

Responsibilities:
- Give callers (HTTP adapters, scripts, tests) stable exception types to map
  onto their own error surfaces.
"""

from __future__ import annotations


class DealGuardError(Exception):
    """Base class for every error raised by the service layer."""


class NotFoundError(DealGuardError):
    pass


class PermissionDeniedError(DealGuardError):
    pass


class ValidationError(DealGuardError):
    """Business-rule validation failure (input was well-formed but not acceptable)."""


class ConflictError(DealGuardError):
    """The requested change conflicts with the current state (duplicates, replays)."""


class InvalidTransitionError(DealGuardError):
    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"Invalid state transition: {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class TransitionBlockedError(DealGuardError):
    """
    The transition is allowed by the table but its business rules are not met yet.
    `blockers` lists every unmet condition.
    """

    def __init__(self, to_status: str, blockers: list[str]) -> None:
        super().__init__(f"Cannot move to {to_status}: " + "; ".join(blockers))
        self.to_status = to_status
        self.blockers = list(blockers)


# --- Module Notes -----------------------------------------------------------
# pydantic.ValidationError is left to propagate for malformed command payloads;
# dealguard.errors.ValidationError is reserved for business-rule rejections.
