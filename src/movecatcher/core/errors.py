"""
Error types for the MoveCatcher decision core.

Expected, non-fatal outcomes (gate denials, deferred submissions) are normally
reported through result objects; these exceptions exist for the cases that must
propagate (venue failures, invariant violations, undecodable identifiers) and for
callers that prefer raising over inspecting results.
"""

from __future__ import annotations

from typing import Optional


class MoveCatcherError(Exception):
    """Base class for all strategy-core errors."""


class GateDenied(MoveCatcherError):
    """Entry gate refused a submission (spread, distance band, existing position)."""

    def __init__(self, reason, detail: Optional[str] = None) -> None:
        self.reason = reason
        self.detail = detail
        name = getattr(reason, "name", str(reason))
        super().__init__(f"{name}: {detail}" if detail else name)


class SubmissionFailed(MoveCatcherError):
    """Order submission exhausted its retries; work is deferred to the next cycle."""


class ReconciliationConflict(MoveCatcherError):
    """More than one live position for a system after the duplicate correction pass."""

    def __init__(self, system: str, tickets) -> None:
        self.system = system
        self.tickets = list(tickets)
        super().__init__(f"system {system} has {len(self.tickets)} live positions: {self.tickets}")


class MalformedIdentifier(MoveCatcherError):
    """An order comment that cannot be decoded into (system, payload)."""

    def __init__(self, comment: str, why: str) -> None:
        self.comment = comment
        self.why = why
        super().__init__(f"malformed identifier {comment!r}: {why}")


class VenueError(MoveCatcherError):
    """Any failure reported by the execution venue."""

    transient = False


class VenueTransientError(VenueError):
    """Temporary venue failure (busy, no connection); safe to retry."""

    transient = True


class RequoteError(VenueTransientError):
    """Price moved before the order was accepted; refresh quotes and retry."""


class VenueTimeoutError(VenueError):
    """No confirmation within the response window; outcome unknown."""


class VenueFatalError(VenueError):
    """Permanent rejection (invalid stops, not enough money, trade disabled)."""
