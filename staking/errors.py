from __future__ import annotations
from typing import Any, Dict, Mapping, Optional


class LedgerError(Exception):
    code: str = "LEDGER_ERROR"

    def __init__(self, message: str = "", *, details: Optional[Mapping[str, Any]] = None) -> None:
        self.message = message or self.__class__.__name__
        self.details = dict(details or {})
        super().__init__(self.__str__())

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    def __str__(self) -> str:
        if self.details:
            packed = ", ".join(f"{k}={v}" for k, v in sorted(self.details.items()))
            return f"{self.code}: {self.message} [{packed}]"
        return f"{self.code}: {self.message}"


# -----------------------------
# Validation (call rejected, nothing changed)
# -----------------------------
class ValidationError(LedgerError):
    code = "VALIDATION"


class UnknownPool(ValidationError):
    code = "UNKNOWN_POOL"

    def __init__(self, pool_id: Any) -> None:
        super().__init__("unknown pool", details={"pool_id": pool_id})


class UnknownReward(ValidationError):
    code = "UNKNOWN_REWARD"

    def __init__(self, reward_id: Any) -> None:
        super().__init__("unknown reward stream", details={"reward_id": reward_id})


class DuplicatePool(ValidationError):
    code = "DUPLICATE_POOL"

    def __init__(self, reward_id: Any, pool_id: Any) -> None:
        super().__init__("pool already attached", details={"reward_id": reward_id, "pool_id": pool_id})


class InsufficientStake(ValidationError):
    code = "INSUFFICIENT_STAKE"

    def __init__(self, *, pool_id: int, user: str, balance: int, requested: int) -> None:
        super().__init__(
            "withdrawal exceeds staked balance",
            details={"pool_id": pool_id, "user": user, "balance": balance, "requested": requested},
        )


class StreamEnded(ValidationError):
    code = "STREAM_ENDED"

    def __init__(self, reward_id: int, end_time: int, now: int) -> None:
        super().__init__("reward stream has ended", details={"reward_id": reward_id, "end_time": end_time, "now": now})


class StreamStarted(ValidationError):
    code = "STREAM_STARTED"

    def __init__(self, reward_id: int, start_time: int, now: int) -> None:
        super().__init__("reward stream has already started",
                         details={"reward_id": reward_id, "start_time": start_time, "now": now})


# -----------------------------
# Configuration / guards / arithmetic
# -----------------------------
class ConfigurationError(LedgerError):
    code = "CONFIGURATION"


class Unauthorized(LedgerError):
    code = "UNAUTHORIZED"

    def __init__(self, caller: str, operation: str) -> None:
        super().__init__("caller is not authorized", details={"caller": caller, "operation": operation})


class ReentrancyError(LedgerError):
    code = "REENTRANCY"

    def __init__(self, operation: str, active: str) -> None:
        super().__init__("nested ledger call rejected", details={"operation": operation, "active": active})


class ArithmeticOverflow(LedgerError):
    code = "OVERFLOW"


class InsufficientFunds(LedgerError):
    """Raised by custody when a holder cannot cover a transfer."""
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, *, asset_id: str, holder: str, balance: int, requested: int) -> None:
        super().__init__(
            "insufficient custody balance",
            details={"asset_id": asset_id, "holder": holder, "balance": balance, "requested": requested},
        )
