import json
import time
import streamlit as st
import pandas as pd

from staking.config import ScenarioConfig
from staking.fixedpoint import MULTIPLIER
from staking.scenario import SimulationEngine

st.set_page_config(page_title="Staking Rewards Ledger Simulator", layout="wide")


def get_engine() -> SimulationEngine:
    if "engine" not in st.session_state:
        cfg = ScenarioConfig()
        st.session_state.cfg = cfg
        st.session_state.seed = 1
        st.session_state.engine = SimulationEngine(cfg=cfg, seed=st.session_state.seed)
    return st.session_state.engine


def reset_engine(reset_config: bool = False) -> None:
    if reset_config:
        cfg = ScenarioConfig()
        st.session_state.cfg = cfg
    else:
        cfg = st.session_state.get("cfg", ScenarioConfig())
    seed = int(st.session_state.get("seed", 1))
    st.session_state.engine = SimulationEngine(cfg=cfg, seed=seed)


engine = get_engine()

st.title("Staking Rewards Ledger Simulator")
st.caption("Time model: 1 tick = 1 ledger time unit. Reward streams emit linearly between start and end.")

def _fmt_duration(seconds: float) -> str:
    if seconds < 0:
        seconds = 0.0
    mins = int(seconds // 60)
    secs = seconds - (mins * 60)
    return f"{mins}m {secs:0.1f}s"

def _fmt(value) -> str:
    return f"{float(value):,.0f}"

def _render_kpi_grid(kpis, columns: int = 4) -> None:
    for idx in range(0, len(kpis), columns):
        row = kpis[idx: idx + columns]
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, row):
            col.metric(label, value)

def _format_event_meta(meta) -> str:
    if meta is None:
        return ""
    if isinstance(meta, str):
        return meta
    try:
        return json.dumps(meta, sort_keys=True, default=str)
    except TypeError:
        return str(meta)

def _ensure_metrics_snapshot(engine: SimulationEngine) -> None:
    rows = engine.metrics.ledger_rows
    if not rows or rows[-1].get("tick") != engine.tick:
        engine.snapshot_metrics(force=True)

def _user_positions(engine: SimulationEngine, user: str) -> pd.DataFrame:
    rows = []
    for pid in engine.pool_ids:
        staked = engine.ledger.staked_balance(pid, user)
        ids, amounts = engine.ledger.claimable(user, pid)
        if staked == 0 and not any(amounts):
            continue
        for rid, amt in zip(ids, amounts):
            snap = engine.ledger.user_reward_info(rid, pid, user)
            rows.append({
                "pool_id": pid,
                "staked": staked,
                "reward_id": rid,
                "claimable": amt,
                "unpaid_accrued": snap["unpaid_accrued"],
                "last_index": snap["last_index"] / MULTIPLIER if snap["last_index"] else None,
            })
    return pd.DataFrame(rows)

with st.sidebar:
    st.header("Sim Controls")

    st.subheader("Run")
    if st.button("Restart simulation"):
        reset_engine(reset_config=True)
        engine = st.session_state.engine
        st.session_state.run_progress = 0.0
        st.session_state.run_progress_label = "Idle"
    st.caption("Restart resets the ledger to tick 0 with default settings.")
    if "seed" not in st.session_state:
        st.session_state.seed = 1
    st.number_input("Random seed", min_value=1, max_value=100000, key="seed")

    run_ticks = st.slider("Ticks to run", min_value=1, max_value=500, value=25)
    c3, c4 = st.columns(2)
    run_one = c3.button("Step 1 tick")
    run_many = c4.button("Run N ticks")
    progress_label = st.session_state.get("run_progress_label", "Idle")
    progress_value = float(st.session_state.get("run_progress", 0.0))
    progress_bar = st.progress(progress_value, text=progress_label)
    if run_one or run_many:
        total = 1 if run_one else int(run_ticks)
        start_ts = time.time()
        for idx in range(total):
            engine.step(1)
            progress = (idx + 1) / total
            progress_bar.progress(progress, text=f"Run progress: {progress:.0%}")
        elapsed = time.time() - start_ts
        _ensure_metrics_snapshot(engine)
        st.session_state.run_progress = 1.0
        st.session_state.run_progress_label = f"Run progress: 100% ({_fmt_duration(elapsed)})"
        progress_bar.progress(1.0, text=st.session_state.run_progress_label)
    st.caption(f"Current tick: {engine.tick}")

    st.subheader("Growth")
    c1, c2, c3 = st.columns(3)
    if c1.button("Add pool"):
        engine.add_pool()
        engine.snapshot_metrics(force=True)
    if c2.button("Add reward"):
        engine.add_reward_stream()
        engine.snapshot_metrics(force=True)
    if c3.button("Add 5 users"):
        for _ in range(5):
            engine.add_user()
        engine.snapshot_metrics(force=True)

    st.subheader("Activity")
    engine.cfg.actions_per_tick = int(st.number_input(
        "Actions per tick", min_value=0, max_value=200, value=int(engine.cfg.actions_per_tick), step=1,
    ))
    engine.cfg.p_deposit = st.slider("Deposit weight", 0.0, 1.0, float(engine.cfg.p_deposit), step=0.05)
    engine.cfg.p_withdraw = st.slider("Withdraw weight", 0.0, 1.0, float(engine.cfg.p_withdraw), step=0.05)
    engine.cfg.p_claim = st.slider("Claim weight", 0.0, 1.0, float(engine.cfg.p_claim), step=0.05)
    engine.cfg.reweight_stride_ticks = int(st.number_input(
        "Reweight every N ticks (0 = never)", min_value=0, max_value=1000,
        value=int(engine.cfg.reweight_stride_ticks), step=10,
    ))

tab_overview, tab_streams, tab_users, tab_events = st.tabs(["Overview", "Reward Streams", "Users", "Events"])

with tab_overview:
    ledger_df = engine.metrics.ledger_df()
    if ledger_df.empty:
        st.info("No metrics yet. Run some ticks.")
    else:
        latest = ledger_df.iloc[-1].to_dict()
        kpis = [
            ("Users", _fmt(latest["num_users"])),
            ("Pools", _fmt(latest["num_pools"])),
            ("Reward streams", _fmt(latest["num_rewards"])),
            ("Stakers", _fmt(latest["stakers"])),
            ("Total staked", _fmt(latest["total_staked"])),
            ("Rewards paid", _fmt(latest["rewards_paid_total"])),
            ("Rewards unpaid (deferred)", _fmt(latest["rewards_unpaid_total"])),
            ("Failed actions", _fmt(latest["actions_failed"])),
        ]
        _render_kpi_grid(kpis, columns=4)

        st.subheader("Total staked")
        st.line_chart(ledger_df, x="tick", y=["total_staked"])

        st.subheader("Rewards paid vs reward custody")
        st.line_chart(ledger_df, x="tick", y=["rewards_paid_total", "reward_custody"])

with tab_streams:
    stream_df = engine.metrics.stream_df()
    if stream_df.empty:
        st.info("No reward streams yet.")
    else:
        rows = []
        for rid in engine.reward_ids:
            info = engine.ledger.reward_info(rid)
            rows.append({
                "reward_id": rid,
                "asset": info["reward_asset_id"],
                "total_amount": info["total_amount"],
                "start_time": info["start_time"],
                "end_time": info["end_time"],
                "pools": ", ".join(str(p) for p in info["pool_ids"]),
                "weights": ", ".join(str(w) for w in info["weights"]),
                "emitted": info["emitted"],
                "paid": engine.paid_by_reward.get(rid, 0),
                "status": "ended" if engine.tick >= info["end_time"]
                          else ("pending" if engine.tick < info["start_time"] else "live"),
            })
        st.dataframe(pd.DataFrame(rows), use_container_width=True)

        sel = st.selectbox("Select reward stream", engine.reward_ids)
        cur = stream_df[stream_df["reward_id"] == sel]
        if cur.empty:
            st.info("No rows for this stream yet.")
        else:
            wide_index = cur.pivot_table(index="tick", columns="pool_id", values="index", aggfunc="last")
            wide_index.columns = [f"pool {c}" for c in wide_index.columns]
            st.subheader("Index per pool (1.0 = attach point)")
            st.line_chart(wide_index)

            wide_speed = cur.pivot_table(index="tick", columns="pool_id", values="speed", aggfunc="last")
            wide_speed.columns = [f"pool {c}" for c in wide_speed.columns]
            st.subheader("Speed per pool (reward units / tick)")
            st.line_chart(wide_speed)

            wide_claim = cur.pivot_table(index="tick", columns="pool_id", values="claimable_total", aggfunc="last")
            wide_claim.columns = [f"pool {c}" for c in wide_claim.columns]
            st.subheader("Claimable (sum over stakers)")
            st.line_chart(wide_claim)

with tab_users:
    if not engine.users:
        st.info("No users yet.")
    else:
        user = st.selectbox("Select user", engine.users)
        free = {sym: engine.custody.balance_of(sym, user)
                for sym in sorted(set(engine.cfg.staking_symbols) | set(engine.cfg.reward_symbols))}
        cols = st.columns(max(1, len(free)))
        for col, (sym, amt) in zip(cols, free.items()):
            col.metric(f"Wallet {sym}", _fmt(amt))
        positions = _user_positions(engine, user)
        if positions.empty:
            st.info("User has no positions.")
        else:
            st.dataframe(positions, use_container_width=True)

        history = engine.metrics.user_df(user)
        if not history.empty:
            st.markdown("**Staked / claimable / paid over time**")
            st.line_chart(history.set_index("tick")[["staked", "claimable", "paid"]])

        st.markdown("**All users (latest snapshot)**")
        st.dataframe(engine.metrics.totals_by_user(), use_container_width=True)

with tab_events:
    st.subheader("Event Log (latest 300)")
    tail = engine.log.tail(300)
    if not tail:
        st.info("No events yet.")
    else:
        df = pd.DataFrame([e.__dict__ for e in tail])
        df["_order"] = range(len(df))
        df = df.sort_values(["time", "_order"], ascending=False).drop(columns="_order")
        if "meta" in df.columns:
            df["meta"] = df["meta"].apply(_format_event_meta)
        st.dataframe(df, use_container_width=True)
