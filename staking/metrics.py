from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List
import pandas as pd

@dataclass
class MetricsStore:
    ledger_rows: List[Dict[str, Any]] = field(default_factory=list)
    stream_rows: List[Dict[str, Any]] = field(default_factory=list)
    # one row per user per snapshot: staked, claimable and paid totals
    user_rows: List[Dict[str, Any]] = field(default_factory=list)

    def add_ledger(self, row: Dict[str, Any]) -> None:
        self.ledger_rows.append(row)

    def add_stream_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.stream_rows.extend(rows)

    def add_user_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.user_rows.extend(rows)

    def ledger_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.ledger_rows)

    def stream_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.stream_rows)

    def user_df(self, user: str | None = None) -> pd.DataFrame:
        df = pd.DataFrame(self.user_rows)
        if user is None or df.empty:
            return df
        return df[df["user"] == user].reset_index(drop=True)

    def totals_by_user(self) -> pd.DataFrame:
        """Latest snapshot per user, largest stake first."""
        df = pd.DataFrame(self.user_rows)
        if df.empty:
            return df
        latest = df[df["tick"] == df["tick"].max()]
        return latest.sort_values(["staked", "user"], ascending=[False, True]).reset_index(drop=True)
