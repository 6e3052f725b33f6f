# domain/errors.py
from __future__ import annotations

from enum import Enum
from typing import Any, Sequence


class ErrorKind(str, Enum):
    FIX_INPUT = "fix_input"
    RETRY = "retry"
    NEEDS_ADMIN = "needs_admin"
    FORBIDDEN = "forbidden"


class EngineError(Exception):
    """
    Base error for every engine failure.

    Each subclass carries a `kind` so callers can tell "fix your input" apart
    from "try again" and "an admin has to step in".
    """

    kind: ErrorKind = ErrorKind.FIX_INPUT

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "reason": self.reason}


class NotFound(EngineError):
    pass


class ValidationFailed(EngineError):
    pass


class InvalidStateTransition(EngineError):
    def __init__(self, *, current: Any, attempted: Any, reason: str | None = None) -> None:
        self.current = getattr(current, "value", current)
        self.attempted = getattr(attempted, "value", attempted)
        msg = f"Cannot transition tournament from '{self.current}' to '{self.attempted}'"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class InsufficientTeams(EngineError):
    def __init__(self, count: int, required: int = 2) -> None:
        self.count = count
        self.required = required
        super().__init__(f"At least {required} registered teams are required (found {count}).")


class InvalidFormatConfiguration(EngineError):
    pass


class CapacityExceeded(EngineError):
    pass


class RosterLocked(EngineError):
    pass


class MatchNotReady(EngineError):
    pass


class MatchAlreadyTerminal(EngineError):
    def __init__(self, match_id: str, status: Any) -> None:
        self.match_id = match_id
        super().__init__(f"Match {match_id} is already {getattr(status, 'value', status)}.")


class DownstreamMatchAlreadyCompleted(EngineError):
    kind = ErrorKind.NEEDS_ADMIN

    def __init__(self, match_id: str, downstream_ids: Sequence[str]) -> None:
        self.match_id = match_id
        self.downstream_ids = list(downstream_ids)
        super().__init__(
            f"Cannot correct match {match_id}: downstream match(es) {', '.join(self.downstream_ids)} already completed."
        )


class UnresolvableTieRequiresManualInput(EngineError):
    kind = ErrorKind.NEEDS_ADMIN

    def __init__(self, tied_groups: Sequence[Any]) -> None:
        self.tied_groups = list(tied_groups)
        super().__init__(
            f"{len(self.tied_groups)} tied group(s) need a manual placement order (ResolveTies)."
        )


class Unauthorized(EngineError):
    kind = ErrorKind.FORBIDDEN


class ConcurrencyConflict(EngineError):
    kind = ErrorKind.RETRY
