from dataclasses import dataclass, field

@dataclass
class LedgerConfig:
    # Custody holder id the ledger keeps staked principal and reward funds under
    ledger_id: str = "ledger"
    event_log_maxlen: int | None = None
    # Never pay rewards out of staked principal when reward asset == staking asset
    protect_principal: bool = True


@dataclass
class ScenarioConfig:
    # Population
    initial_users: int = 20
    initial_pools: int = 3
    admin_id: str = "admin"
    user_initial_balance: int = 1_000_000

    # Assets
    staking_symbols: list[str] = field(default_factory=lambda: ["STK"])
    reward_symbols: list[str] = field(default_factory=lambda: ["RWD"])

    # Reward streams
    initial_rewards: int = 2
    reward_amount_mean: int = 500_000
    reward_duration_ticks: int = 200
    reward_start_delay_ticks: int = 5
    pools_per_reward_max: int = 3
    weight_max: int = 10
    reweight_stride_ticks: int = 50   # 0 disables periodic weight changes

    # Activity (per tick)
    actions_per_tick: int = 6
    p_deposit: float = 0.5
    p_withdraw: float = 0.2
    p_claim: float = 0.3
    deposit_size_mean_frac: float = 0.05   # of the user's free balance
    withdraw_size_max_frac: float = 0.5    # of the user's staked balance

    # Metrics / log
    metrics_stride: int = 1
    event_log_maxlen: int | None = 5000

    # Debug
    debug_custody: bool = False

    def __post_init__(self) -> None:
        if not self.staking_symbols:
            self.staking_symbols = ["STK"]
        if not self.reward_symbols:
            self.reward_symbols = ["RWD"]
        self.initial_pools = max(1, int(self.initial_pools))
        self.pools_per_reward_max = max(1, min(int(self.pools_per_reward_max), self.initial_pools))
        self.reward_duration_ticks = max(1, int(self.reward_duration_ticks))
        self.weight_max = max(1, int(self.weight_max))
