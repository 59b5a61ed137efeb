from __future__ import annotations
from typing import Dict, List, Optional
import logging
import random

import numpy as np

from .clock import ManualClock
from .config import LedgerConfig, ScenarioConfig
from .custody import VaultCustody
from .engine import AdminGate, StakingLedger
from .errors import LedgerError
from .fixedpoint import MULTIPLIER
from .metrics import MetricsStore

logger = logging.getLogger(__name__)


class SimulationEngine:
    """Drives a StakingLedger with a random population of stakers, one tick at a time."""

    def __init__(self, cfg: ScenarioConfig, seed: int = 1) -> None:
        self.cfg = cfg
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)

        self.clock = ManualClock(0)
        self.custody = VaultCustody(ledger_id="ledger", debug=cfg.debug_custody)
        ledger_cfg = LedgerConfig(event_log_maxlen=cfg.event_log_maxlen)
        self.ledger = StakingLedger(self.custody, self.clock, AdminGate([cfg.admin_id]), cfg=ledger_cfg)

        self.metrics = MetricsStore()

        self.users: List[str] = []
        self.pool_ids: List[int] = []
        self.reward_ids: List[int] = []
        self.paid_by_reward: Dict[int, int] = {}
        self.paid_by_user: Dict[str, int] = {}
        self.actions_ok: int = 0
        self.actions_failed: int = 0
        self._user_counter = 0

        self._bootstrap()

    @property
    def tick(self) -> int:
        return self.clock.now()

    @property
    def log(self):
        return self.ledger.log

    def _bootstrap(self) -> None:
        for _ in range(self.cfg.initial_users):
            self.add_user()
        for _ in range(self.cfg.initial_pools):
            self.add_pool()
        for _ in range(self.cfg.initial_rewards):
            self.add_reward_stream()
        self.snapshot_metrics()

    # -----------------------------
    # Population
    # -----------------------------
    def add_user(self) -> str:
        self._user_counter += 1
        user = f"user_{self._user_counter:04d}"
        for sym in self.cfg.staking_symbols:
            self.custody.mint(sym, user, self.cfg.user_initial_balance)
        self.users.append(user)
        return user

    def add_pool(self) -> int:
        symbols = self.cfg.staking_symbols
        asset = symbols[len(self.pool_ids) % len(symbols)]
        pool_id = self.ledger.create_pool(self.cfg.admin_id, asset)
        self.pool_ids.append(pool_id)
        return pool_id

    def add_reward_stream(self, pool_ids: Optional[List[int]] = None) -> int:
        cfg = self.cfg
        asset = self.rng.choice(cfg.reward_symbols)
        amount = max(cfg.reward_duration_ticks, int(self.np_rng.exponential(cfg.reward_amount_mean)))
        if pool_ids is None:
            k = self.rng.randint(1, min(cfg.pools_per_reward_max, len(self.pool_ids)))
            pool_ids = self.rng.sample(self.pool_ids, k=k)
        weights = [self.rng.randint(1, cfg.weight_max) for _ in pool_ids]
        start = self.tick + max(0, int(cfg.reward_start_delay_ticks))
        end = start + cfg.reward_duration_ticks

        self.custody.mint(asset, cfg.admin_id, amount)
        reward_id = self.ledger.create_reward_stream(cfg.admin_id, asset, amount, start, end, pool_ids, weights)
        self.reward_ids.append(reward_id)
        return reward_id

    # -----------------------------
    # Actions
    # -----------------------------
    def _record_paid(self, paid: Dict[int, int], user: Optional[str] = None) -> None:
        for rid, amt in paid.items():
            self.paid_by_reward[rid] = self.paid_by_reward.get(rid, 0) + amt
        if user is not None:
            self.paid_by_user[user] = self.paid_by_user.get(user, 0) + sum(paid.values())

    def _deposit(self, user: str) -> None:
        pool_id = self.rng.choice(self.pool_ids)
        asset = self.ledger.pool_info(pool_id).staking_asset_id
        free = self.custody.balance_of(asset, user)
        if free <= 0:
            return
        amount = int(self.np_rng.exponential(self.cfg.deposit_size_mean_frac * free)) + 1
        self._record_paid(self.ledger.deposit(user, pool_id, min(amount, free)), user)

    def _withdraw(self, user: str) -> None:
        staked = [pid for pid in self.pool_ids if self.ledger.staked_balance(pid, user) > 0]
        if not staked:
            return
        pool_id = self.rng.choice(staked)
        balance = self.ledger.staked_balance(pool_id, user)
        amount = max(1, int(balance * self.rng.uniform(0.0, self.cfg.withdraw_size_max_frac)))
        self._record_paid(self.ledger.withdraw(user, pool_id, amount), user)

    def _claim(self, user: str) -> None:
        self._record_paid(self.ledger.claim(user, self.pool_ids), user)

    def _random_action(self) -> None:
        cfg = self.cfg
        user = self.rng.choice(self.users)
        r = self.rng.random() * max(1e-9, cfg.p_deposit + cfg.p_withdraw + cfg.p_claim)
        try:
            if r < cfg.p_deposit:
                self._deposit(user)
            elif r < cfg.p_deposit + cfg.p_withdraw:
                self._withdraw(user)
            else:
                self._claim(user)
            self.actions_ok += 1
        except LedgerError as exc:
            self.actions_failed += 1
            logger.debug("t=%d %s action failed: %s", self.tick, user, exc)

    def _reweight(self) -> None:
        for rid in self.reward_ids:
            info = self.ledger.reward_info(rid)
            if self.tick >= info["end_time"]:
                continue
            weights = [self.rng.randint(1, self.cfg.weight_max) for _ in info["pool_ids"]]
            self.ledger.update_weights(self.cfg.admin_id, rid, weights)

    def step(self, n_ticks: int = 1) -> None:
        for _ in range(n_ticks):
            self.clock.advance(1)
            stride = int(self.cfg.reweight_stride_ticks or 0)
            if stride > 0 and self.tick % stride == 0:
                self._reweight()
            for _ in range(max(0, int(self.cfg.actions_per_tick))):
                self._random_action()
            self.snapshot_metrics()

    # -----------------------------
    # Metrics
    # -----------------------------
    def snapshot_metrics(self, force: bool = False) -> None:
        stride = int(self.cfg.metrics_stride or 0)
        if not force and (stride <= 0 or self.tick % stride != 0):
            return
        store = self.ledger.store
        stream_rows = []
        for rid in self.reward_ids:
            info = self.ledger.reward_info(rid)
            for pid in info["pool_ids"]:
                state = self.ledger.reward_pool_info(rid, pid)
                pool = store.pools[pid]
                claimable_total = 0
                for user in store.users_of(pid):
                    ids, amounts = self.ledger.claimable(user, pid)
                    claimable_total += amounts[ids.index(rid)]
                stream_rows.append({
                    "tick": self.tick,
                    "reward_id": rid,
                    "pool_id": pid,
                    "asset": info["reward_asset_id"],
                    "weight": state["weight"],
                    "speed": state["speed"],
                    "index": state["index"] / MULTIPLIER,
                    "total_staked": pool.total_staked,
                    "claimable_total": claimable_total,
                })
        self.metrics.add_stream_rows(stream_rows)

        user_rows = []
        for user in self.users:
            staked = 0
            claimable_total = 0
            for pid in self.pool_ids:
                staked += store.stake_of(pid, user)
                claimable_total += sum(self.ledger.claimable(user, pid)[1])
            user_rows.append({
                "tick": self.tick,
                "user": user,
                "staked": staked,
                "claimable": claimable_total,
                "paid": self.paid_by_user.get(user, 0),
            })
        self.metrics.add_user_rows(user_rows)

        unpaid_total = sum(s.unpaid_accrued for s in store.snapshots.values())
        reward_held = sum(self.custody.balance_of(sym, "ledger") for sym in set(self.cfg.reward_symbols))
        self.metrics.add_ledger({
            "tick": self.tick,
            "num_users": len(self.users),
            "num_pools": self.ledger.pool_count(),
            "num_rewards": self.ledger.reward_count(),
            "total_staked": sum(p.total_staked for p in store.pools.values()),
            "stakers": sum(1 for s in store.stakes.values() if s.balance > 0),
            "rewards_paid_total": sum(self.paid_by_reward.values()),
            "rewards_unpaid_total": unpaid_total,
            "reward_custody": reward_held,
            "actions_ok": self.actions_ok,
            "actions_failed": self.actions_failed,
        })
