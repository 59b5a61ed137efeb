from __future__ import annotations
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import logging

from .accrual import accrue_stream_pool, project_user, settle_user
from .clock import Clock
from .config import LedgerConfig
from .core import Event, EventLog, LedgerStore, Pool, RewardStream
from .custody import Custody
from .errors import InsufficientStake, ReentrancyError, Unauthorized, ValidationError
from .fixedpoint import MULTIPLIER, as_uint, checked_add
from .registry import PoolRegistry, RewardRegistry

logger = logging.getLogger(__name__)

Authorizer = Callable[[str], bool]


class AdminGate:
    def __init__(self, admins: Iterable[str]) -> None:
        self.admins = set(admins)

    def __call__(self, caller: str) -> bool:
        return caller in self.admins


class StakingLedger:
    """
    Multi-pool, multi-reward staking ledger.

    Every public mutating call runs under one guard: nested calls (from custody
    callbacks) are rejected, time is read once, and any exception restores the
    store, the custody (when it can snapshot) and the event log to how they
    were on entry. Each call accrues the indices it touches and settles the
    affected users before it changes balances or reward parameters.
    """

    def __init__(self, custody: Custody, clock: Clock, authorize: Authorizer,
                 cfg: Optional[LedgerConfig] = None, store: Optional[LedgerStore] = None) -> None:
        self.cfg = cfg or LedgerConfig()
        self.custody = custody
        self.clock = clock
        self.authorize = authorize
        self.store = store or LedgerStore()
        self.log = EventLog(maxlen=self.cfg.event_log_maxlen)

        self.pools = PoolRegistry(self.store, self._emit)
        self.rewards = RewardRegistry(self.store, self.pools, self._emit)

        self._active: Optional[str] = None
        self._now: Optional[int] = None

    # -----------------------------
    # Guard / events
    # -----------------------------
    @contextmanager
    def _operation(self, name: str, caller: str, *, admin: bool = False) -> Iterator[int]:
        if self._active is not None:
            raise ReentrancyError(name, self._active)
        if admin and not self.authorize(caller):
            raise Unauthorized(caller, name)
        self._active = name
        now = self.clock.now()
        self._now = now
        checkpoint = self.store.checkpoint()
        custody_token = self.custody.snapshot()
        log_count = self.log.count
        try:
            yield now
        except Exception:
            self.store.rollback(checkpoint)
            self.custody.restore(custody_token)
            self.log.truncate(log_count)
            logger.debug("%s by %s aborted at t=%d; state restored", name, caller, now)
            raise
        finally:
            self._active = None
            self._now = None

    def _emit(self, event_type: str, **kwargs) -> None:
        t = self._now if self._now is not None else self.clock.now()
        self.log.add(Event(t, event_type, **kwargs))

    # -----------------------------
    # Accrual + settlement
    # -----------------------------
    def _available(self, asset_id: str) -> int:
        held = self.custody.balance_of(asset_id, self.cfg.ledger_id)
        if self.cfg.protect_principal:
            held -= self.store.staked_principal(asset_id)
        return max(0, held)

    def _accrue(self, stream: RewardStream, pool: Pool, now: int) -> None:
        stream.per_pool[pool.pool_id] = accrue_stream_pool(stream, pool.pool_id, pool.total_staked, now)

    def _settle(self, stream: RewardStream, pool: Pool, user: str) -> int:
        """Credit and try to pay one (reward, pool, user). Returns the amount paid."""
        key = (stream.reward_id, pool.pool_id, user)
        snap = self.store.peek_snapshot(*key)
        last = snap.last_index or MULTIPLIER
        index = stream.per_pool[pool.pool_id].index
        balance = self.store.stake_of(pool.pool_id, user)
        new_snap, earned = settle_user(snap, index, balance)
        moved = new_snap.last_index != last

        owed = new_snap.unpaid_accrued
        paid = 0
        if owed > 0 and self._available(stream.reward_asset_id) >= owed:
            paid = owed
            new_snap = replace(new_snap, unpaid_accrued=0)
        self.store.snapshots[key] = new_snap

        if paid:
            self.custody.transfer_out(stream.reward_asset_id, user, paid)
        elif owed:
            logger.debug("reward %d pool %d: payout of %d to %s deferred (available %d)",
                         stream.reward_id, pool.pool_id, owed, user, self._available(stream.reward_asset_id))
        if moved or paid:
            self._emit("DISTRIBUTION_SETTLED", actor_id=user, pool_id=pool.pool_id, reward_id=stream.reward_id,
                       asset_id=stream.reward_asset_id, amount=earned,
                       meta={"index": index, "paid": paid, "unpaid": new_snap.unpaid_accrued})
        return paid

    def _settle_pool(self, pool: Pool, user: str, now: int) -> Dict[int, int]:
        paid: Dict[int, int] = {}
        for rid in pool.reward_ids:
            stream = self.store.rewards[rid]
            self._accrue(stream, pool, now)
            paid[rid] = self._settle(stream, pool, user)
        return paid

    # -----------------------------
    # Administrative operations
    # -----------------------------
    def create_pool(self, caller: str, staking_asset_id: str) -> int:
        with self._operation("create_pool", caller, admin=True):
            return self.pools.create(staking_asset_id).pool_id

    def create_reward_stream(self, caller: str, reward_asset_id: str, total_amount: int,
                             start_time: int, end_time: int,
                             pool_ids: Sequence[int], weights: Sequence[int]) -> int:
        with self._operation("create_reward_stream", caller, admin=True):
            stream = self.rewards.create(reward_asset_id, total_amount, start_time, end_time, pool_ids, weights)
            self.custody.transfer_in(reward_asset_id, caller, stream.total_amount)
            return stream.reward_id

    def attach_pool(self, caller: str, reward_id: int, pool_id: int, weight: int) -> None:
        with self._operation("attach_pool", caller, admin=True) as now:
            self.rewards.attach(self.rewards.get(reward_id), pool_id, weight, now)

    def update_amount_and_end_time(self, caller: str, reward_id: int, amount_delta: int, new_end_time: int) -> int:
        with self._operation("update_amount_and_end_time", caller, admin=True) as now:
            stream = self.rewards.get(reward_id)
            new_total = self.rewards.update_amount_and_end_time(stream, amount_delta, new_end_time, now)
            if amount_delta < 0:
                self.custody.transfer_out(stream.reward_asset_id, caller, -amount_delta)
            elif amount_delta > 0:
                self.custody.transfer_in(stream.reward_asset_id, caller, amount_delta)
            return new_total

    def update_start_time(self, caller: str, reward_id: int, new_start_time: int) -> None:
        with self._operation("update_start_time", caller, admin=True) as now:
            self.rewards.update_start_time(self.rewards.get(reward_id), new_start_time, now)

    def update_weights(self, caller: str, reward_id: int, weights: Sequence[int]) -> None:
        with self._operation("update_weights", caller, admin=True) as now:
            self.rewards.update_weights(self.rewards.get(reward_id), weights, now)

    # -----------------------------
    # User operations
    # -----------------------------
    def deposit(self, user: str, pool_id: int, amount: int) -> Dict[int, int]:
        """Stake `amount`; returns rewards paid out along the way, by reward id."""
        with self._operation("deposit", user) as now:
            amount = as_uint(amount)
            if amount == 0:
                raise ValidationError("deposit amount must be positive")
            pool = self.pools.get(pool_id)
            paid = self._settle_pool(pool, user, now)

            rec = self.store.stake_record(pool_id, user)
            rec.balance = checked_add(rec.balance, amount)
            pool.total_staked = checked_add(pool.total_staked, amount)
            self.custody.transfer_in(pool.staking_asset_id, user, amount)
            self._emit("DEPOSITED", actor_id=user, pool_id=pool_id, asset_id=pool.staking_asset_id, amount=amount,
                       meta={"balance": rec.balance, "total_staked": pool.total_staked})
            return paid

    def withdraw(self, user: str, pool_id: int, amount: int) -> Dict[int, int]:
        with self._operation("withdraw", user) as now:
            amount = as_uint(amount)
            if amount == 0:
                raise ValidationError("withdraw amount must be positive")
            pool = self.pools.get(pool_id)
            balance = self.store.stake_of(pool_id, user)
            if balance < amount:
                raise InsufficientStake(pool_id=pool_id, user=user, balance=balance, requested=amount)
            paid = self._settle_pool(pool, user, now)

            rec = self.store.stake_record(pool_id, user)
            rec.balance -= amount
            pool.total_staked -= amount
            self.custody.transfer_out(pool.staking_asset_id, user, amount)
            self._emit("WITHDRAWN", actor_id=user, pool_id=pool_id, asset_id=pool.staking_asset_id, amount=amount,
                       meta={"balance": rec.balance, "total_staked": pool.total_staked})
            return paid

    def claim(self, user: str, pool_ids: Sequence[int]) -> Dict[int, int]:
        """Settle every stream of every listed pool; returns total paid by reward id."""
        with self._operation("claim", user) as now:
            pools = [self.pools.get(pid) for pid in pool_ids]
            totals: Dict[int, int] = {}
            for pool in pools:
                for rid, amt in self._settle_pool(pool, user, now).items():
                    totals[rid] = totals.get(rid, 0) + amt
            return totals

    def claimable(self, user: str, pool_id: int) -> Tuple[List[int], List[int]]:
        now = self.clock.now()
        pool = self.pools.get(pool_id)
        balance = self.store.stake_of(pool_id, user)
        reward_ids: List[int] = []
        amounts: List[int] = []
        for rid in pool.reward_ids:
            stream = self.store.rewards[rid]
            snap = self.store.peek_snapshot(rid, pool_id, user)
            reward_ids.append(rid)
            amounts.append(project_user(stream, pool_id, pool.total_staked, snap, balance, now))
        return reward_ids, amounts

    # -----------------------------
    # Views
    # -----------------------------
    def pool_count(self) -> int:
        return len(self.store.pools)

    def reward_count(self) -> int:
        return len(self.store.rewards)

    def pool_info(self, pool_id: int) -> Pool:
        pool = self.pools.get(pool_id)
        return replace(pool, reward_ids=list(pool.reward_ids))

    def pool_reward_ids(self, pool_id: int) -> List[int]:
        return list(self.pools.get(pool_id).reward_ids)

    def reward_info(self, reward_id: int) -> dict:
        s = self.rewards.get(reward_id)
        return {
            "reward_id": s.reward_id,
            "reward_asset_id": s.reward_asset_id,
            "total_amount": s.total_amount,
            "start_time": s.start_time,
            "end_time": s.end_time,
            "pool_ids": list(s.pool_ids),
            "weights": s.weights(),
            # as of the last accrual
            "emitted": s.emitted(),
        }

    def reward_pool_info(self, reward_id: int, pool_id: int) -> dict:
        s = self.rewards.get(reward_id)
        if pool_id not in s.per_pool:
            self.pools.get(pool_id)
            raise ValidationError("pool not attached to reward", details={"reward_id": reward_id, "pool_id": pool_id})
        st = s.per_pool[pool_id]
        return {"weight": st.weight, "speed": st.speed, "index": st.index, "last_update_time": st.last_update_time}

    def staked_balance(self, pool_id: int, user: str) -> int:
        self.pools.get(pool_id)
        return self.store.stake_of(pool_id, user)

    def user_reward_info(self, reward_id: int, pool_id: int, user: str) -> dict:
        snap = self.store.peek_snapshot(reward_id, pool_id, user)
        return {"last_index": snap.last_index, "unpaid_accrued": snap.unpaid_accrued}
