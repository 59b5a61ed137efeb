from __future__ import annotations

from .errors import ValidationError


class Clock:
    """Ledger time source. Must never run backwards."""

    def now(self) -> int:
        raise NotImplementedError


class ManualClock(Clock):
    def __init__(self, start: int = 0) -> None:
        self.tick: int = int(start)

    def now(self) -> int:
        return self.tick

    def advance(self, n: int = 1) -> int:
        if n < 0:
            raise ValidationError("clock cannot run backwards", details={"n": n})
        self.tick += int(n)
        return self.tick

    def set(self, t: int) -> int:
        if t < self.tick:
            raise ValidationError("clock cannot run backwards", details={"now": self.tick, "t": t})
        self.tick = int(t)
        return self.tick
