import logging
from bisect import bisect_right
from collections import deque

from screener.market.indicators import calculate_vcp
from screener.market.models import HistoryEntry, SymbolSnapshot

logger = logging.getLogger(__name__)

DEFAULT_OFFSETS = ["5s", "15s", "30s", "1m", "3m", "5m", "15m"]

_UNIT_MS = {"s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}


def parse_offset(label: str) -> int:
    """'5m' -> 300000 (ms)"""
    unit = label[-1]
    if unit not in _UNIT_MS or not label[:-1].isdigit():
        raise ValueError(f"Invalid offset label: {label}")
    return int(label[:-1]) * _UNIT_MS[unit]


def _to_entry(snapshot: SymbolSnapshot) -> HistoryEntry:
    if snapshot.indicators:
        vcp = snapshot.indicators.vcp
        price_to_wa = snapshot.indicators.price_to_weighted_avg
    else:
        vcp = calculate_vcp(
            snapshot.last_price,
            snapshot.weighted_avg_price,
            snapshot.high_price,
            snapshot.low_price,
        )
        wa = snapshot.weighted_avg_price
        price_to_wa = snapshot.last_price / wa if wa else 1.0

    return HistoryEntry(
        price=snapshot.last_price,
        volume=snapshot.quote_volume,
        weighted_avg=snapshot.weighted_avg_price,
        price_to_wa=price_to_wa,
        vcp=vcp,
        timestamp=snapshot.timestamp,
    )


class SnapshotTracker:
    """
    每个交易对的滚动快照

    get(symbol, offset) 返回距最新快照 "至少 offset" 的样本中最新的一个。
    保留最大 offset 之内的所有样本，外加一个比最大 offset 更早的样本。
    """

    def __init__(self, offsets: list[str] | None = None):
        labels = offsets if offsets is not None else DEFAULT_OFFSETS
        self.offsets: dict[str, int] = {label: parse_offset(label) for label in labels}
        self._horizon_ms = max(self.offsets.values(), default=0)
        self._samples: dict[str, deque[HistoryEntry]] = {}

    def update(self, symbol: str, snapshot: SymbolSnapshot) -> bool:
        samples = self._samples.setdefault(symbol, deque())
        if samples and snapshot.timestamp <= samples[-1].timestamp:
            logger.debug(
                f"Ignore stale snapshot {symbol}: {snapshot.timestamp} <= {samples[-1].timestamp}"
            )
            return False

        samples.append(_to_entry(snapshot))

        cutoff = snapshot.timestamp - self._horizon_ms
        while len(samples) >= 2 and samples[1].timestamp <= cutoff:
            samples.popleft()
        return True

    def latest(self, symbol: str) -> HistoryEntry | None:
        samples = self._samples.get(symbol)
        return samples[-1] if samples else None

    def get(self, symbol: str, offset: str | int) -> HistoryEntry | None:
        """offset: 标签 ('3m') 或毫秒数"""
        samples = self._samples.get(symbol)
        if not samples:
            return None

        offset_ms = parse_offset(offset) if isinstance(offset, str) else int(offset)
        target = samples[-1].timestamp - offset_ms
        idx = bisect_right(samples, target, key=lambda e: e.timestamp)
        if idx == 0:
            return None
        return samples[idx - 1]

    def history(self, symbol: str) -> dict[str, HistoryEntry]:
        result: dict[str, HistoryEntry] = {}
        for label, offset_ms in self.offsets.items():
            entry = self.get(symbol, offset_ms)
            if entry is not None:
                result[label] = entry
        return result

    def attach(self, snapshot: SymbolSnapshot) -> SymbolSnapshot:
        snapshot.history = self.history(snapshot.symbol)
        return snapshot

    def symbols(self) -> list[str]:
        return list(self._samples)

    def sample_count(self, symbol: str) -> int:
        return len(self._samples.get(symbol, ()))

    def forget(self, symbol: str) -> None:
        self._samples.pop(symbol, None)

    def clear(self) -> None:
        self._samples.clear()
