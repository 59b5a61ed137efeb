from __future__ import annotations
from typing import Callable, Dict, Optional
import copy
import logging

from .core import format_balances
from .errors import InsufficientFunds
from .fixedpoint import as_uint

logger = logging.getLogger(__name__)

TransferHook = Callable[[str, str, str, int], None]


class Custody:
    """
    Asset custody collaborator. `transfer_in` moves funds from `holder` into the
    ledger's account, `transfer_out` moves them from the ledger to `holder`.
    Implementations raise on failure and leave balances untouched.

    snapshot()/restore() let the ledger roll custody back when an operation
    aborts; custodians that cannot rewind keep the defaults.
    """

    def transfer_in(self, asset_id: str, holder: str, amount: int) -> None:
        raise NotImplementedError

    def transfer_out(self, asset_id: str, holder: str, amount: int) -> None:
        raise NotImplementedError

    def balance_of(self, asset_id: str, holder: str) -> int:
        raise NotImplementedError

    def snapshot(self) -> Optional[object]:
        return None

    def restore(self, token: Optional[object]) -> None:
        return None


class Vault:
    def __init__(self) -> None:
        self.inventory: Dict[str, int] = {}

    def get(self, asset_id: str) -> int:
        return int(self.inventory.get(asset_id, 0))

    def add(self, asset_id: str, amount: int) -> None:
        self.inventory[asset_id] = self.get(asset_id) + int(amount)

    def sub(self, asset_id: str, amount: int) -> bool:
        amt = int(amount)
        if self.get(asset_id) < amt:
            return False
        self.inventory[asset_id] = self.get(asset_id) - amt
        if self.inventory[asset_id] == 0:
            self.inventory.pop(asset_id, None)
        return True


class VaultCustody(Custody):
    """In-memory custody: one Vault per holder."""

    def __init__(self, ledger_id: str = "ledger", debug: bool = False,
                 on_transfer: Optional[TransferHook] = None) -> None:
        self.ledger_id = ledger_id
        self.debug = debug
        self.on_transfer = on_transfer
        self.vaults: Dict[str, Vault] = {}

    def vault(self, holder: str) -> Vault:
        v = self.vaults.get(holder)
        if v is None:
            v = Vault()
            self.vaults[holder] = v
        return v

    def _debug_change(self, action: str, holder: str, asset: str, amount: int,
                      before: Dict[str, int], after: Dict[str, int]) -> None:
        if not self.debug or not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug(
            "[CUSTODY] holder=%s action=%s asset=%s amount=%d before={ %s } after={ %s }",
            holder,
            action,
            asset,
            amount,
            format_balances(before),
            format_balances(after),
        )

    def _move(self, asset_id: str, src: str, dst: str, amount: int, action: str) -> None:
        amount = as_uint(amount)
        src_vault = self.vault(src)
        debug = self.debug and logger.isEnabledFor(logging.DEBUG)
        if debug:
            before = dict(src_vault.inventory)
        if not src_vault.sub(asset_id, amount):
            raise InsufficientFunds(asset_id=asset_id, holder=src, balance=src_vault.get(asset_id), requested=amount)
        self.vault(dst).add(asset_id, amount)
        if debug:
            self._debug_change(action, src, asset_id, amount, before, dict(src_vault.inventory))

    def mint(self, asset_id: str, holder: str, amount: int) -> None:
        self.vault(holder).add(asset_id, as_uint(amount))

    def transfer_in(self, asset_id: str, holder: str, amount: int) -> None:
        self._move(asset_id, holder, self.ledger_id, amount, "transfer_in")
        if self.on_transfer is not None:
            self.on_transfer("in", asset_id, holder, amount)

    def transfer_out(self, asset_id: str, holder: str, amount: int) -> None:
        self._move(asset_id, self.ledger_id, holder, amount, "transfer_out")
        if self.on_transfer is not None:
            self.on_transfer("out", asset_id, holder, amount)

    def balance_of(self, asset_id: str, holder: str) -> int:
        v = self.vaults.get(holder)
        return v.get(asset_id) if v else 0

    def snapshot(self) -> Dict[str, Vault]:
        return copy.deepcopy(self.vaults)

    def restore(self, token: Optional[object]) -> None:
        if token is not None:
            self.vaults = token
