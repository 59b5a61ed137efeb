from __future__ import annotations
from typing import Callable, List, Sequence, Tuple
import logging

from .accrual import accrue_stream_pool
from .core import LedgerStore, Pool, RewardPoolState, RewardStream
from .errors import (
    ConfigurationError, DuplicatePool, StreamEnded, StreamStarted,
    UnknownPool, UnknownReward, ValidationError,
)
from .fixedpoint import MULTIPLIER, as_uint, mul_div

logger = logging.getLogger(__name__)

Emit = Callable[..., None]


def compute_speeds(total_amount: int, start_time: int, end_time: int,
                   weights: Sequence[int]) -> Tuple[int, List[int]]:
    """
    Stream speed and its per-pool split. Both divisions floor; the remainders
    are never emitted.
    """
    duration = end_time - start_time
    if duration <= 0:
        raise ConfigurationError("reward window must have positive length",
                                 details={"start_time": start_time, "end_time": end_time})
    total_weight = sum(weights)
    if total_weight <= 0:
        raise ConfigurationError("total weight must be positive", details={"weights": list(weights)})
    total_speed = total_amount // duration
    return total_speed, [mul_div(total_speed, w, total_weight) for w in weights]


class PoolRegistry:
    def __init__(self, store: LedgerStore, emit: Emit) -> None:
        self.store = store
        self.emit = emit

    def get(self, pool_id: int) -> Pool:
        pool = self.store.pools.get(pool_id) if isinstance(pool_id, int) else None
        if pool is None:
            raise UnknownPool(pool_id)
        return pool

    def create(self, staking_asset_id: str) -> Pool:
        if not staking_asset_id:
            raise ValidationError("staking asset id is required")
        pool_id = self.store.next_pool_id
        pool = Pool(pool_id=pool_id, staking_asset_id=staking_asset_id)
        self.store.pools[pool_id] = pool
        self.store.next_pool_id += 1
        self.emit("POOL_CREATED", pool_id=pool_id, asset_id=staking_asset_id)
        logger.info("pool %d created for %s", pool_id, staking_asset_id)
        return pool


class RewardRegistry:
    """
    Reward stream configuration. Every change to speed inputs (weights, amount,
    window) first accrues all attached pools under the old speeds, so time that
    has already elapsed is never re-priced. New speeds spread only the part of
    total_amount not yet emitted over the time left in the window.
    """

    def __init__(self, store: LedgerStore, pools: PoolRegistry, emit: Emit) -> None:
        self.store = store
        self.pools = pools
        self.emit = emit

    def get(self, reward_id: int) -> RewardStream:
        stream = self.store.rewards.get(reward_id) if isinstance(reward_id, int) else None
        if stream is None:
            raise UnknownReward(reward_id)
        return stream

    # -----------------------------
    # Internals
    # -----------------------------
    def accrue_all(self, stream: RewardStream, now: int) -> None:
        for pid in stream.pool_ids:
            pool = self.store.pools[pid]
            stream.per_pool[pid] = accrue_stream_pool(stream, pid, pool.total_staked, now)

    def _apply_speeds(self, stream: RewardStream, since: int) -> None:
        # whatever is left of the budget is spread over [since, end_time); callers accrue to `since` first
        remaining = stream.total_amount - stream.emitted()
        _total_speed, speeds = compute_speeds(remaining, since, stream.end_time, stream.weights())
        for pid, speed in zip(stream.pool_ids, speeds):
            stream.per_pool[pid].speed = speed
            self.emit("SPEED_CHANGED", reward_id=stream.reward_id, pool_id=pid, amount=speed,
                      meta={"weight": stream.per_pool[pid].weight})

    def _require_live(self, stream: RewardStream, now: int) -> None:
        if stream.has_ended(now):
            raise StreamEnded(stream.reward_id, stream.end_time, now)

    def _check_weights(self, weights: Sequence[int]) -> List[int]:
        return [as_uint(w, "weight") for w in weights]

    # -----------------------------
    # Operations
    # -----------------------------
    def create(self, reward_asset_id: str, total_amount: int, start_time: int, end_time: int,
               pool_ids: Sequence[int], weights: Sequence[int]) -> RewardStream:
        if not reward_asset_id:
            raise ValidationError("reward asset id is required")
        total_amount = as_uint(total_amount, "total_amount")
        start_time = as_uint(start_time, "start_time")
        end_time = as_uint(end_time, "end_time")
        if len(pool_ids) != len(weights):
            raise ValidationError("pool_ids and weights differ in length",
                                  details={"pool_ids": len(pool_ids), "weights": len(weights)})
        weights = self._check_weights(weights)
        reward_id = self.store.next_reward_id
        seen = set()
        for pid in pool_ids:
            self.pools.get(pid)
            if pid in seen:
                raise DuplicatePool(reward_id, pid)
            seen.add(pid)
        # raises before anything is stored
        compute_speeds(total_amount, start_time, end_time, weights)

        stream = RewardStream(
            reward_id=reward_id,
            reward_asset_id=reward_asset_id,
            total_amount=total_amount,
            start_time=start_time,
            end_time=end_time,
        )
        for pid, w in zip(pool_ids, weights):
            stream.per_pool[pid] = RewardPoolState(weight=w, index=MULTIPLIER)
            stream.pool_ids.append(pid)
            self.store.pools[pid].reward_ids.append(reward_id)
        self.store.rewards[reward_id] = stream
        self.store.next_reward_id += 1

        self.emit("REWARD_CREATED", reward_id=reward_id, asset_id=reward_asset_id, amount=total_amount,
                  meta={"start_time": start_time, "end_time": end_time,
                        "pool_ids": list(pool_ids), "weights": list(weights)})
        self._apply_speeds(stream, start_time)
        logger.info("reward %d created: %s %d over [%d, %d) across pools %s",
                    reward_id, reward_asset_id, total_amount, start_time, end_time, list(pool_ids))
        return stream

    def attach(self, stream: RewardStream, pool_id: int, weight: int, now: int) -> None:
        self._require_live(stream, now)
        pool = self.pools.get(pool_id)
        if pool_id in stream.per_pool:
            raise DuplicatePool(stream.reward_id, pool_id)
        weight = as_uint(weight, "weight")
        compute_speeds(stream.total_amount, stream.start_time, stream.end_time, stream.weights() + [weight])

        self.accrue_all(stream, now)
        state = RewardPoolState(weight=weight, index=MULTIPLIER)
        if stream.has_started(now):
            # accrues only from the moment it joins
            state.last_update_time = now
        stream.per_pool[pool_id] = state
        stream.pool_ids.append(pool_id)
        pool.reward_ids.append(stream.reward_id)
        self.emit("POOL_ATTACHED", reward_id=stream.reward_id, pool_id=pool_id, meta={"weight": weight})
        self._apply_speeds(stream, max(now, stream.start_time))
        logger.info("reward %d: attached pool %d with weight %d", stream.reward_id, pool_id, weight)

    def update_amount_and_end_time(self, stream: RewardStream, amount_delta: int,
                                   new_end_time: int, now: int) -> int:
        """Returns the new total amount. Custody movement is up to the caller."""
        self._require_live(stream, now)
        if isinstance(amount_delta, bool) or not isinstance(amount_delta, int):
            raise ValidationError("amount_delta must be an integer", details={"amount_delta": amount_delta})
        new_end_time = as_uint(new_end_time, "end_time")
        if new_end_time <= now:
            raise ValidationError("end time must be in the future", details={"end_time": new_end_time, "now": now})
        new_total = stream.total_amount + amount_delta
        if new_total < 0:
            raise ValidationError("cannot withdraw more than the stream holds",
                                  details={"total_amount": stream.total_amount, "amount_delta": amount_delta})
        as_uint(new_total, "total_amount")
        since = max(now, stream.start_time)
        compute_speeds(new_total, since, new_end_time, stream.weights())

        self.accrue_all(stream, now)
        emitted = stream.emitted()
        if new_total < emitted:
            raise ValidationError("cannot cut the stream below what it has already emitted",
                                  details={"total_amount": new_total, "emitted": emitted})
        stream.total_amount = new_total
        stream.end_time = new_end_time
        self.emit("REWARD_UPDATED", reward_id=stream.reward_id, amount=new_total,
                  meta={"amount_delta": amount_delta, "end_time": new_end_time, "emitted": emitted})
        self._apply_speeds(stream, since)
        logger.info("reward %d: amount %+d -> %d, end_time -> %d",
                    stream.reward_id, amount_delta, new_total, new_end_time)
        return new_total

    def update_start_time(self, stream: RewardStream, new_start_time: int, now: int) -> None:
        if stream.has_started(now):
            raise StreamStarted(stream.reward_id, stream.start_time, now)
        new_start_time = as_uint(new_start_time, "start_time")
        if new_start_time <= now:
            raise ValidationError("start time must be in the future",
                                  details={"start_time": new_start_time, "now": now})
        compute_speeds(stream.total_amount, new_start_time, stream.end_time, stream.weights())

        old = stream.start_time
        stream.start_time = new_start_time
        # nothing accrued yet; restart the clock from the new start
        for pid in stream.pool_ids:
            stream.per_pool[pid].last_update_time = None
        self.emit("START_TIME_CHANGED", reward_id=stream.reward_id,
                  meta={"old_start_time": old, "start_time": new_start_time})
        self._apply_speeds(stream, new_start_time)

    def update_weights(self, stream: RewardStream, weights: Sequence[int], now: int) -> None:
        self._require_live(stream, now)
        if len(weights) != len(stream.pool_ids):
            raise ValidationError("weights must match attached pools",
                                  details={"pools": len(stream.pool_ids), "weights": len(weights)})
        weights = self._check_weights(weights)
        compute_speeds(stream.total_amount, stream.start_time, stream.end_time, weights)

        self.accrue_all(stream, now)
        for pid, w in zip(stream.pool_ids, weights):
            stream.per_pool[pid].weight = w
        self.emit("WEIGHTS_UPDATED", reward_id=stream.reward_id,
                  meta={"pool_ids": list(stream.pool_ids), "weights": list(weights)})
        self._apply_speeds(stream, max(now, stream.start_time))
