from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Dict


@dataclass
class LedgerSnapshot:
    transactions: Dict[str, int]
    amounts: Dict[str, float]
    coupons: Dict[str, int]
    settlements: Dict[str, int]
    rejections: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "transactions": dict(self.transactions),
            "amounts": dict(self.amounts),
            "coupons": dict(self.coupons),
            "settlements": dict(self.settlements),
            "rejections": dict(self.rejections),
        }


class LedgerObservabilityStore:
    """Process-local counters for ledger, coupon and settlement activity."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._transactions: Dict[str, int] = defaultdict(int)
        self._amounts: Dict[str, Decimal] = defaultdict(Decimal)
        self._coupons: Dict[str, int] = defaultdict(int)
        self._settlements: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)

    def record_transaction(self, transaction_type: str, amount: Decimal) -> None:
        with self._lock:
            self._transactions[transaction_type] += 1
            self._amounts[transaction_type] += Decimal(amount)

    def record_coupon_event(self, event: str) -> None:
        with self._lock:
            self._coupons[event] += 1

    def record_settlement_transition(self, status: str) -> None:
        with self._lock:
            self._settlements[status] += 1

    def record_rejection(self, code: str) -> None:
        with self._lock:
            self._rejections[code] += 1

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                transactions=dict(self._transactions),
                amounts={key: float(value) for key, value in self._amounts.items()},
                coupons=dict(self._coupons),
                settlements=dict(self._settlements),
                rejections=dict(self._rejections),
            )

    def reset(self) -> None:
        with self._lock:
            self._transactions.clear()
            self._amounts.clear()
            self._coupons.clear()
            self._settlements.clear()
            self._rejections.clear()


_STORE = LedgerObservabilityStore()


def get_ledger_store() -> LedgerObservabilityStore:
    return _STORE


__all__ = ["get_ledger_store", "LedgerObservabilityStore", "LedgerSnapshot"]
