import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# 各周期需要的订阅时长 (ms)
HORIZONS: dict[str, int] = {
    "5m": 5 * 60_000,
    "15m": 15 * 60_000,
    "1h": 60 * 60_000,
    "4h": 4 * 60 * 60_000,
    "8h": 8 * 60 * 60_000,
    "12h": 12 * 60 * 60_000,
    "1d": 24 * 60 * 60_000,
}


@dataclass
class TimeframeReadiness:
    ready: int
    total: int


@dataclass
class WarmupStatus:
    total_symbols: int
    timeframes: dict[str, TimeframeReadiness] = field(default_factory=dict)
    overall_progress: float = 0.0  # 0-100

    @property
    def complete(self) -> bool:
        return self.total_symbols > 0 and self.overall_progress >= 100


def _now_ms() -> int:
    return int(time.time() * 1000)


class WarmupTracker:
    """订阅开始时间 -> 各周期是否可信"""

    def __init__(self) -> None:
        self.start_times: dict[str, int] = {}

    def subscribe(self, symbol: str, started_at: int | None = None) -> None:
        # 重复订阅不重置起始时间
        if symbol not in self.start_times:
            self.start_times[symbol] = started_at if started_at is not None else _now_ms()

    def unsubscribe(self, symbol: str) -> None:
        self.start_times.pop(symbol, None)

    def clear(self) -> None:
        self.start_times.clear()

    def is_ready(self, symbol: str, horizon: str, now: int | None = None) -> bool:
        started_at = self.start_times.get(symbol)
        if started_at is None:
            return False
        now = now if now is not None else _now_ms()
        return now - started_at >= HORIZONS[horizon]

    def status(
        self,
        symbols: list[str] | None = None,
        start_times: dict[str, int] | None = None,
        now: int | None = None,
    ) -> WarmupStatus:
        start_times = start_times if start_times is not None else self.start_times
        symbols = symbols if symbols is not None else list(start_times)
        now = now if now is not None else _now_ms()

        timeframes: dict[str, TimeframeReadiness] = {}
        ready_pairs = 0
        for label, duration in HORIZONS.items():
            ready = 0
            for symbol in symbols:
                started_at = start_times.get(symbol)
                if started_at is not None and now - started_at >= duration:
                    ready += 1
            timeframes[label] = TimeframeReadiness(ready=ready, total=len(symbols))
            ready_pairs += ready

        total_pairs = len(symbols) * len(HORIZONS)
        progress = ready_pairs / total_pairs * 100 if total_pairs else 0.0

        return WarmupStatus(
            total_symbols=len(symbols),
            timeframes=timeframes,
            overall_progress=progress,
        )

    def gate(
        self, symbol: str, values: dict[str, float], now: int | None = None
    ) -> dict[str, float | None]:
        """未就绪周期的值替换为 None"""
        now = now if now is not None else _now_ms()
        gated: dict[str, float | None] = {}
        for label, value in values.items():
            if label in HORIZONS and not self.is_ready(symbol, label, now):
                gated[label] = None
            else:
                gated[label] = value
        return gated
