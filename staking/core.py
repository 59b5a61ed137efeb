from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Tuple, Optional, List
from collections import deque
import copy

def format_balances(bal: Dict[str, int]) -> str:
    if not bal:
        return "(empty)"
    items = sorted(bal.items(), key=lambda kv: kv[0])
    return ", ".join(f"{asset}:{amount}" for asset, amount in items)

# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    time: int
    event_type: str
    actor_id: Optional[str] = None
    pool_id: Optional[int] = None
    reward_id: Optional[int] = None
    asset_id: Optional[str] = None
    amount: Optional[int] = None
    meta: dict = field(default_factory=dict)

class EventLog:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.events = deque(maxlen=maxlen)
        # total ever added; stays correct when the deque drops old entries
        self.count: int = 0

    def add(self, e: Event) -> None:
        self.events.append(e)
        self.count += 1

    def truncate(self, count: int) -> None:
        """Drop events added after the log held `count` events."""
        extra = min(max(0, self.count - count), len(self.events))
        for _ in range(extra):
            self.events.pop()
        self.count = min(self.count, count)

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        if n >= len(self.events):
            return list(self.events)
        return list(self.events)[-n:]

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]


# -----------------------------
# Pools / reward streams
# -----------------------------
@dataclass
class Pool:
    pool_id: int
    staking_asset_id: str
    total_staked: int = 0
    reward_ids: List[int] = field(default_factory=list)

@dataclass
class RewardPoolState:
    weight: int
    speed: int = 0
    index: int = 0
    last_update_time: Optional[int] = None
    # amount released to this pool so far, including intervals with nothing staked
    emitted: int = 0

@dataclass
class RewardStream:
    reward_id: int
    reward_asset_id: str
    total_amount: int
    start_time: int
    end_time: int
    per_pool: Dict[int, RewardPoolState] = field(default_factory=dict)
    pool_ids: List[int] = field(default_factory=list)

    def has_started(self, now: int) -> bool:
        return now > self.start_time

    def has_ended(self, now: int) -> bool:
        return now >= self.end_time

    def emitted(self) -> int:
        return sum(self.per_pool[pid].emitted for pid in self.pool_ids)

    def weights(self) -> List[int]:
        return [self.per_pool[pid].weight for pid in self.pool_ids]


# -----------------------------
# Users
# -----------------------------
@dataclass
class UserStake:
    pool_id: int
    user: str
    balance: int = 0

@dataclass
class UserRewardSnapshot:
    last_index: int = 0
    unpaid_accrued: int = 0


class LedgerStore:
    """All mutable ledger records. Owned by one StakingLedger."""

    def __init__(self) -> None:
        self.pools: Dict[int, Pool] = {}
        self.rewards: Dict[int, RewardStream] = {}
        self.stakes: Dict[Tuple[int, str], UserStake] = {}
        self.snapshots: Dict[Tuple[int, int, str], UserRewardSnapshot] = {}
        # 0 is never issued
        self.next_pool_id: int = 1
        self.next_reward_id: int = 1

    def checkpoint(self) -> dict:
        return copy.deepcopy(self.__dict__)

    def rollback(self, checkpoint: dict) -> None:
        self.__dict__.clear()
        self.__dict__.update(checkpoint)

    def stake_of(self, pool_id: int, user: str) -> int:
        rec = self.stakes.get((pool_id, user))
        return rec.balance if rec else 0

    def stake_record(self, pool_id: int, user: str) -> UserStake:
        key = (pool_id, user)
        rec = self.stakes.get(key)
        if rec is None:
            rec = UserStake(pool_id=pool_id, user=user)
            self.stakes[key] = rec
        return rec

    def peek_snapshot(self, reward_id: int, pool_id: int, user: str) -> UserRewardSnapshot:
        return self.snapshots.get((reward_id, pool_id, user)) or UserRewardSnapshot()

    def staked_principal(self, asset_id: str) -> int:
        return sum(p.total_staked for p in self.pools.values() if p.staking_asset_id == asset_id)

    def users_of(self, pool_id: int) -> List[str]:
        return [u for (pid, u), rec in self.stakes.items() if pid == pool_id and rec.balance > 0]
