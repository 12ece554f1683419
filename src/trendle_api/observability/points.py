from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class PointsSnapshot:
    ledger: Dict[str, Dict[str, int]]
    redemptions: Dict[str, int]
    vouchers: Dict[str, int]
    checkins: Dict[str, int]
    moderation: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ledger": {key: dict(value) for key, value in self.ledger.items()},
            "redemptions": dict(self.redemptions),
            "vouchers": dict(self.vouchers),
            "checkins": dict(self.checkins),
            "moderation": dict(self.moderation),
        }


class PointsObservabilityStore:
    """Collect points-core outcomes for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ledger_entries: Dict[str, int] = defaultdict(int)
        self._ledger_points: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._vouchers: Dict[str, int] = defaultdict(int)
        self._checkins: Dict[str, int] = defaultdict(int)
        self._moderation: Dict[str, int] = defaultdict(int)

    def record_ledger_delta(self, reason: str, amount_delta: int) -> None:
        with self._lock:
            self._ledger_entries[reason] += 1
            self._ledger_points[reason] += amount_delta

    def record_redemption(self, outcome: str) -> None:
        with self._lock:
            self._redemptions[outcome] += 1

    def record_voucher_validation(self, outcome: str) -> None:
        with self._lock:
            self._vouchers[outcome] += 1

    def record_checkin(self, outcome: str) -> None:
        with self._lock:
            self._checkins[outcome] += 1

    def record_moderation_action(self, action: str) -> None:
        with self._lock:
            self._moderation[action] += 1

    def snapshot(self) -> PointsSnapshot:
        with self._lock:
            ledger = {
                "entries_by_reason": dict(self._ledger_entries),
                "points_by_reason": dict(self._ledger_points),
            }
            return PointsSnapshot(
                ledger=ledger,
                redemptions=dict(self._redemptions),
                vouchers=dict(self._vouchers),
                checkins=dict(self._checkins),
                moderation=dict(self._moderation),
            )

    def reset(self) -> None:
        with self._lock:
            self._ledger_entries.clear()
            self._ledger_points.clear()
            self._redemptions.clear()
            self._vouchers.clear()
            self._checkins.clear()
            self._moderation.clear()


_STORE = PointsObservabilityStore()


def get_points_store() -> PointsObservabilityStore:
    return _STORE


__all__ = ["get_points_store", "PointsObservabilityStore", "PointsSnapshot"]
