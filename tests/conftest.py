from types import SimpleNamespace

import pytest

from staking.clock import ManualClock
from staking.config import LedgerConfig
from staking.custody import VaultCustody
from staking.engine import AdminGate, StakingLedger

ADMIN = "admin"


def _mk_env(**cfg) -> SimpleNamespace:
    clock = ManualClock(0)
    custody = VaultCustody(ledger_id="ledger")
    ledger = StakingLedger(custody, clock, AdminGate([ADMIN]), cfg=LedgerConfig(**cfg))
    return SimpleNamespace(ledger=ledger, custody=custody, clock=clock, admin=ADMIN)


@pytest.fixture
def env() -> SimpleNamespace:
    """Empty ledger at t=0; users A and B hold 1000 STK, admin holds 100k RWD."""
    e = _mk_env()
    e.custody.mint("STK", "A", 1000)
    e.custody.mint("STK", "B", 1000)
    e.custody.mint("RWD", ADMIN, 100_000)
    return e


@pytest.fixture
def single(env) -> SimpleNamespace:
    """One pool, one stream: 1000 RWD over [0, 100) at weight 1, i.e. speed 10."""
    env.pid = env.ledger.create_pool(ADMIN, "STK")
    env.rid = env.ledger.create_reward_stream(ADMIN, "RWD", 1000, 0, 100, [env.pid], [1])
    return env


@pytest.fixture
def env_factory():
    return _mk_env
