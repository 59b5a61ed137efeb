import pytest

from staking.errors import (
    ConfigurationError, DuplicatePool, InsufficientFunds, StreamEnded, StreamStarted,
    Unauthorized, UnknownPool, UnknownReward, ValidationError,
)
from staking.fixedpoint import MULTIPLIER
from staking.registry import compute_speeds


def test_compute_speeds_floor_split():
    total_speed, speeds = compute_speeds(1000, 0, 100, [1, 3])
    assert total_speed == 10
    assert speeds == [2, 7]


def test_compute_speeds_rejects_empty_window_and_zero_weight():
    with pytest.raises(ConfigurationError):
        compute_speeds(1000, 50, 50, [1])
    with pytest.raises(ConfigurationError):
        compute_speeds(1000, 0, 100, [0, 0])


def test_pools_get_sequential_ids_from_one(env):
    assert env.ledger.create_pool(env.admin, "STK") == 1
    assert env.ledger.create_pool(env.admin, "LP") == 2
    assert env.ledger.pool_count() == 2
    with pytest.raises(UnknownPool):
        env.ledger.pool_info(0)
    created = env.ledger.log.of_type("POOL_CREATED")
    assert [e.pool_id for e in created] == [1, 2]


def test_admin_operations_require_authorization(env):
    with pytest.raises(Unauthorized):
        env.ledger.create_pool("mallory", "STK")
    assert env.ledger.pool_count() == 0


def test_create_reward_stream(env):
    p1 = env.ledger.create_pool(env.admin, "STK")
    p2 = env.ledger.create_pool(env.admin, "STK")
    rid = env.ledger.create_reward_stream(env.admin, "RWD", 1000, 0, 100, [p1, p2], [1, 3])

    assert rid == 1
    assert env.ledger.reward_pool_info(rid, p1) == {"weight": 1, "speed": 2, "index": MULTIPLIER, "last_update_time": None}
    assert env.ledger.reward_pool_info(rid, p2)["speed"] == 7
    assert env.ledger.pool_reward_ids(p1) == [rid]
    assert env.custody.balance_of("RWD", "ledger") == 1000
    assert env.custody.balance_of("RWD", env.admin) == 99_000
    assert len(env.ledger.log.of_type("SPEED_CHANGED")) == 2


@pytest.mark.parametrize(
    "pool_ids, weights, start, end, exc",
    [
        ([1], [1, 2], 0, 100, ValidationError),
        ([1, 1], [1, 1], 0, 100, DuplicatePool),
        ([1, 7], [1, 1], 0, 100, UnknownPool),
        ([1], [1], 100, 100, ConfigurationError),
        ([1], [1], 100, 50, ConfigurationError),
        ([1], [0], 0, 100, ConfigurationError),
    ],
)
def test_create_reward_stream_rejections_leave_no_trace(env, pool_ids, weights, start, end, exc):
    env.ledger.create_pool(env.admin, "STK")
    events_before = env.ledger.log.count
    with pytest.raises(exc):
        env.ledger.create_reward_stream(env.admin, "RWD", 1000, start, end, pool_ids, weights)
    assert env.ledger.reward_count() == 0
    assert env.ledger.pool_reward_ids(1) == []
    assert env.custody.balance_of("RWD", env.admin) == 100_000
    assert env.ledger.log.count == events_before


def test_unfunded_reward_stream_rolls_back(env):
    pid = env.ledger.create_pool(env.admin, "STK")
    with pytest.raises(InsufficientFunds):
        env.ledger.create_reward_stream(env.admin, "RWD", 10**9, 0, 100, [pid], [1])
    assert env.ledger.reward_count() == 0
    assert env.ledger.store.next_reward_id == 1
    assert env.ledger.pool_reward_ids(pid) == []
    assert env.ledger.log.of_type("REWARD_CREATED") == []


def test_unknown_reward(env):
    with pytest.raises(UnknownReward):
        env.ledger.update_weights(env.admin, 5, [1])


def test_attach_pool_accrues_under_old_speeds(single):
    e = single
    e.ledger.deposit("A", e.pid, 100)
    e.clock.set(50)
    p2 = e.ledger.create_pool(e.admin, "STK")
    e.ledger.attach_pool(e.admin, e.rid, p2, 1)

    assert e.ledger.reward_pool_info(e.rid, e.pid)["index"] == 6 * MULTIPLIER
    assert e.ledger.reward_pool_info(e.rid, p2) == {"weight": 1, "speed": 5, "index": MULTIPLIER, "last_update_time": 50}
    assert e.ledger.reward_pool_info(e.rid, e.pid)["speed"] == 5

    e.clock.set(100)
    assert e.ledger.claimable("A", e.pid) == ([e.rid], [750])


def test_attached_pool_earns_only_from_attachment(single):
    e = single
    p2 = e.ledger.create_pool(e.admin, "STK")
    e.ledger.deposit("A", e.pid, 100)
    e.ledger.deposit("B", p2, 100)
    e.clock.set(50)
    e.ledger.attach_pool(e.admin, e.rid, p2, 1)

    e.clock.set(100)
    assert e.ledger.claimable("A", e.pid) == ([e.rid], [750])
    assert e.ledger.claimable("B", p2) == ([e.rid], [250])

    paid_a = e.ledger.claim("A", [e.pid])
    paid_b = e.ledger.claim("B", [p2])
    assert paid_a[e.rid] + paid_b[e.rid] <= e.ledger.reward_info(e.rid)["total_amount"]
    assert e.custody.balance_of("RWD", "ledger") == 0


def test_attach_before_start_accrues_from_start(env):
    p1 = env.ledger.create_pool(env.admin, "STK")
    p2 = env.ledger.create_pool(env.admin, "STK")
    rid = env.ledger.create_reward_stream(env.admin, "RWD", 1000, 10, 110, [p1], [1])
    env.ledger.deposit("B", p2, 100)
    env.clock.set(5)
    env.ledger.attach_pool(env.admin, rid, p2, 1)
    assert env.ledger.reward_pool_info(rid, p2)["last_update_time"] is None

    env.clock.set(110)
    assert env.ledger.claimable("B", p2) == ([rid], [500])


def test_attach_pool_rejections(single):
    e = single
    with pytest.raises(DuplicatePool):
        e.ledger.attach_pool(e.admin, e.rid, e.pid, 1)
    with pytest.raises(UnknownPool):
        e.ledger.attach_pool(e.admin, e.rid, 42, 1)
    p2 = e.ledger.create_pool(e.admin, "STK")
    e.clock.set(100)
    with pytest.raises(StreamEnded):
        e.ledger.attach_pool(e.admin, e.rid, p2, 1)
    assert e.ledger.pool_reward_ids(p2) == []


def test_update_amount_and_end_time_top_up(single):
    e = single
    e.ledger.deposit("A", e.pid, 100)
    e.clock.set(50)
    new_total = e.ledger.update_amount_and_end_time(e.admin, e.rid, 1000, 100)

    assert new_total == 2000
    assert e.custody.balance_of("RWD", "ledger") == 2000
    # 500 already emitted; the other 1500 over the last 50 ticks
    assert e.ledger.reward_pool_info(e.rid, e.pid)["speed"] == 30
    e.clock.set(100)
    assert e.ledger.claimable("A", e.pid) == ([e.rid], [2000])


def test_update_amount_and_end_time_withdraws_and_extends(single):
    e = single
    e.clock.set(10)
    e.ledger.update_amount_and_end_time(e.admin, e.rid, -400, 200)

    info = e.ledger.reward_info(e.rid)
    assert info["total_amount"] == 600
    assert info["end_time"] == 200
    assert e.custody.balance_of("RWD", e.admin) == 99_000 + 400
    # 100 went out over [0, 10) with nothing staked; 500 // 190
    assert e.ledger.reward_pool_info(e.rid, e.pid)["speed"] == 2
    assert info["emitted"] == 100
    assert len(e.ledger.log.of_type("REWARD_UPDATED")) == 1


def test_cut_mid_window_never_owes_more_than_the_stream_holds(single):
    e = single
    e.ledger.deposit("A", e.pid, 100)
    e.clock.set(50)
    e.ledger.update_amount_and_end_time(e.admin, e.rid, -400, 100)

    # 500 went out at speed 10; the remaining 100 over [50, 100)
    assert e.ledger.reward_pool_info(e.rid, e.pid)["speed"] == 2
    e.clock.set(100)
    assert e.ledger.claimable("A", e.pid) == ([e.rid], [600])

    assert e.ledger.claim("A", [e.pid]) == {e.rid: 600}
    assert e.ledger.user_reward_info(e.rid, e.pid, "A")["unpaid_accrued"] == 0
    assert e.custody.balance_of("RWD", "ledger") == 0
    assert e.custody.balance_of("RWD", e.admin) == 99_000 + 400


def test_extending_end_spreads_only_what_is_left(single):
    e = single
    e.ledger.deposit("A", e.pid, 100)
    e.clock.set(50)
    e.ledger.update_amount_and_end_time(e.admin, e.rid, 0, 150)

    assert e.ledger.reward_pool_info(e.rid, e.pid)["speed"] == 5
    e.clock.set(150)
    assert e.ledger.claimable("A", e.pid) == ([e.rid], [1000])


def test_cannot_cut_below_emitted(single):
    e = single
    e.ledger.deposit("A", e.pid, 100)
    e.clock.set(50)
    with pytest.raises(ValidationError) as info:
        e.ledger.update_amount_and_end_time(e.admin, e.rid, -600, 100)
    assert info.value.details == {"total_amount": 400, "emitted": 500}
    assert e.ledger.reward_info(e.rid)["total_amount"] == 1000
    assert e.custody.balance_of("RWD", e.admin) == 99_000
    # accrual done inside the rejected call is rolled back too
    assert e.ledger.reward_pool_info(e.rid, e.pid)["last_update_time"] == 0


def test_update_amount_and_end_time_rejections(single):
    e = single
    e.clock.set(10)
    with pytest.raises(ValidationError):
        e.ledger.update_amount_and_end_time(e.admin, e.rid, 0, 10)
    with pytest.raises(ValidationError):
        e.ledger.update_amount_and_end_time(e.admin, e.rid, -1001, 150)
    e.clock.set(100)
    with pytest.raises(StreamEnded):
        e.ledger.update_amount_and_end_time(e.admin, e.rid, 10, 300)
    assert e.ledger.reward_info(e.rid)["total_amount"] == 1000


def test_update_start_time_before_start(env):
    pid = env.ledger.create_pool(env.admin, "STK")
    rid = env.ledger.create_reward_stream(env.admin, "RWD", 1000, 10, 110, [pid], [1])
    env.ledger.deposit("A", pid, 100)
    env.clock.set(5)
    env.ledger.update_start_time(env.admin, rid, 20)

    assert env.ledger.reward_info(rid)["start_time"] == 20
    # 1000 // 90
    assert env.ledger.reward_pool_info(rid, pid)["speed"] == 11
    env.clock.set(30)
    assert env.ledger.claimable("A", pid) == ([rid], [110])
    assert len(env.ledger.log.of_type("START_TIME_CHANGED")) == 1


def test_update_start_time_rejections(env):
    pid = env.ledger.create_pool(env.admin, "STK")
    rid = env.ledger.create_reward_stream(env.admin, "RWD", 1000, 10, 110, [pid], [1])
    env.clock.set(5)
    with pytest.raises(ValidationError):
        env.ledger.update_start_time(env.admin, rid, 5)
    with pytest.raises(ConfigurationError):
        env.ledger.update_start_time(env.admin, rid, 110)
    env.clock.set(11)
    with pytest.raises(StreamStarted):
        env.ledger.update_start_time(env.admin, rid, 50)
    assert env.ledger.reward_info(rid)["start_time"] == 10


def test_update_weights_settles_under_old_weights(env):
    p1 = env.ledger.create_pool(env.admin, "STK")
    p2 = env.ledger.create_pool(env.admin, "STK")
    rid = env.ledger.create_reward_stream(env.admin, "RWD", 1000, 0, 100, [p1, p2], [1, 1])
    env.ledger.deposit("A", p1, 100)
    env.ledger.deposit("B", p2, 100)

    env.clock.set(50)
    env.ledger.update_weights(env.admin, rid, [3, 1])
    assert env.ledger.reward_info(rid)["weights"] == [3, 1]
    assert env.ledger.reward_pool_info(rid, p1)["speed"] == 7
    assert env.ledger.reward_pool_info(rid, p2)["speed"] == 2

    env.clock.set(100)
    assert env.ledger.claimable("A", p1) == ([rid], [250 + 350])
    assert env.ledger.claimable("B", p2) == ([rid], [250 + 100])


def test_update_weights_length_must_match(single):
    e = single
    with pytest.raises(ValidationError):
        e.ledger.update_weights(e.admin, e.rid, [1, 2])
    assert e.ledger.log.of_type("WEIGHTS_UPDATED") == []
