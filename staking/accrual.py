from __future__ import annotations
from dataclasses import replace
from typing import Tuple

from .core import RewardPoolState, RewardStream, UserRewardSnapshot
from .fixedpoint import MULTIPLIER, checked_add, checked_mul, mul_div

# -----------------------------
# Index accrual
# -----------------------------
def accrue(state: RewardPoolState, total_staked: int, start_time: int, end_time: int, now: int) -> RewardPoolState:
    """
    Advance a (reward, pool) index to `now` under its current speed and the
    pool's current total stake. Returns a new state; the input is not touched.

    Emission over an interval with nothing staked is dropped: the clock moves
    forward but the index does not.
    """
    if now < start_time:
        return state
    last = start_time if state.last_update_time is None else state.last_update_time
    effective_now = min(now, end_time)
    elapsed = effective_now - last
    if elapsed <= 0:
        if state.last_update_time is None:
            return replace(state, last_update_time=last)
        return state
    accrued = checked_mul(state.speed, elapsed)
    index = state.index
    if total_staked > 0:
        index = checked_add(index, mul_div(accrued, MULTIPLIER, total_staked))
    return replace(state, index=index, last_update_time=effective_now,
                   emitted=checked_add(state.emitted, accrued))


def accrue_stream_pool(stream: RewardStream, pool_id: int, total_staked: int, now: int) -> RewardPoolState:
    return accrue(stream.per_pool[pool_id], total_staked, stream.start_time, stream.end_time, now)


# -----------------------------
# User settlement
# -----------------------------
def settle_user(snap: UserRewardSnapshot, index: int, balance: int) -> Tuple[UserRewardSnapshot, int]:
    """Credit index growth since the user's last touch. Returns (snapshot, earned)."""
    last = snap.last_index or MULTIPLIER
    delta = index - last
    if delta <= 0:
        return replace(snap, last_index=last), 0
    earned = mul_div(delta, balance, MULTIPLIER)
    return replace(snap, last_index=index, unpaid_accrued=checked_add(snap.unpaid_accrued, earned)), earned


def project_user(stream: RewardStream, pool_id: int, total_staked: int,
                 snap: UserRewardSnapshot, balance: int, now: int) -> int:
    """What settlement would leave owed to the user right now, without mutating anything."""
    state = accrue_stream_pool(stream, pool_id, total_staked, now)
    projected, _earned = settle_user(snap, state.index, balance)
    return projected.unpaid_accrued
