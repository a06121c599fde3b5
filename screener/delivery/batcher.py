import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from screener.alert.models import Alert

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

MIN_BATCH_WINDOW_MS = 10_000
MAX_BATCH_WINDOW_MS = 300_000
DEFAULT_BATCH_WINDOW_MS = 60_000


class BatchState(Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    FLUSHING = "flushing"


@dataclass
class SymbolStats:
    symbol: str
    count: int = 0  # 本批次
    types: set[str] = field(default_factory=set)
    severities: set[str] = field(default_factory=set)
    last_hour_count: int = 0
    last_day_count: int = 0
    recent_types: list[str] = field(default_factory=list)  # 最近 3 个，新的在前


@dataclass
class AlertSummary:
    total_alerts: int
    batch_duration: int  # 秒
    symbol_stats: list[SymbolStats]
    severity_breakdown: dict[str, int]
    timeframe_breakdown: dict[str, int]
    batch_start_time: int
    batch_end_time: int


BatchCallback = Callable[[AlertSummary, list[Alert]], Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


class AlertBatcher:
    """
    把一段时间内的告警合并成一条摘要，避免触发下游限流 (Discord: 5 条 / 5 秒)

    idle -> collecting (第一条告警，启动计时器) -> flushing (计时器到期或 flush()) -> idle
    """

    def __init__(
        self,
        batch_window_ms: int = DEFAULT_BATCH_WINDOW_MS,
        clock: Callable[[], int] = _now_ms,
    ):
        self.batch_window_ms = DEFAULT_BATCH_WINDOW_MS
        if batch_window_ms != DEFAULT_BATCH_WINDOW_MS:
            # 超出范围时保留默认值
            self.set_batch_window(batch_window_ms)
        self.state = BatchState.IDLE
        self._clock = clock
        self._alerts: list[Alert] = []
        self._batch_start = 0
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._history: dict[str, list[tuple[int, str]]] = {}
        self._on_batch_ready: BatchCallback | None = None

    def on_batch_ready(self, callback: BatchCallback) -> None:
        self._on_batch_ready = callback

    @property
    def batch_size(self) -> int:
        return len(self._alerts)

    def add(self, alert: Alert) -> None:
        if self.state != BatchState.COLLECTING:
            self._start_batch()

        self._alerts.append(alert)
        self._add_to_history(alert.symbol, alert.timestamp, alert.type.value)
        logger.debug(f"Batched {alert.symbol} ({alert.type.value}), size={len(self._alerts)}")

    def _start_batch(self) -> None:
        self.state = BatchState.COLLECTING
        self._alerts = []
        self._batch_start = self._clock()

        if self._timer:
            self._timer.cancel()
            self._timer = None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # 没有事件循环时只能手动 flush()
            logger.debug("No running loop, batch flush must be triggered manually")
            return
        self._timer = loop.call_later(self.batch_window_ms / 1000, self._complete_batch)

    def _complete_batch(self) -> None:
        self._timer = None
        if not self._alerts:
            self.state = BatchState.IDLE
            return

        self.state = BatchState.FLUSHING
        alerts = list(self._alerts)
        summary = self.generate_summary(alerts, self._batch_start)
        self._alerts = []
        logger.info(
            f"Batch complete: {len(alerts)} alerts from {len(summary.symbol_stats)} symbols"
        )

        try:
            self._dispatch(summary, alerts)
        finally:
            self.state = BatchState.IDLE

    def _dispatch(self, summary: AlertSummary, alerts: list[Alert]) -> None:
        if not self._on_batch_ready:
            return

        result = self._on_batch_ready(summary, alerts)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def flush(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None
        self._complete_batch()

    def stop(self) -> None:
        """取消计时器，丢弃当前批次"""
        if self._timer:
            self._timer.cancel()
            self._timer = None
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        dropped = len(self._alerts)
        self._alerts = []
        self.state = BatchState.IDLE
        if dropped:
            logger.info(f"Dropped {dropped} batched alerts on stop")

    def set_batch_window(self, ms: int) -> bool:
        if ms < MIN_BATCH_WINDOW_MS:
            logger.warning(f"Batch window too short ({ms}ms), minimum {MIN_BATCH_WINDOW_MS}ms")
            return False
        if ms > MAX_BATCH_WINDOW_MS:
            logger.warning(f"Batch window too long ({ms}ms), maximum {MAX_BATCH_WINDOW_MS}ms")
            return False
        self.batch_window_ms = ms
        logger.info(f"Alert batch window set to {ms}ms")
        return True

    def _add_to_history(self, symbol: str, timestamp: int, alert_type: str) -> None:
        history = self._history.setdefault(symbol, [])
        history.append((timestamp, alert_type))
        cutoff = timestamp - DAY_MS
        self._history[symbol] = [h for h in history if h[0] > cutoff]

    def recent_count(self, symbol: str, window_ms: int, now: int | None = None) -> int:
        now = now if now is not None else self._clock()
        cutoff = now - window_ms
        return sum(1 for ts, _ in self._history.get(symbol, []) if ts > cutoff)

    def recent_types(self, symbol: str, limit: int = 3, now: int | None = None) -> list[str]:
        now = now if now is not None else self._clock()
        cutoff = now - HOUR_MS
        recent = sorted(
            (h for h in self._history.get(symbol, []) if h[0] > cutoff),
            key=lambda h: h[0],
            reverse=True,
        )
        return [t for _, t in recent[:limit]]

    def generate_summary(self, alerts: list[Alert], batch_start: int) -> AlertSummary:
        now = self._clock()
        stats_map: dict[str, SymbolStats] = {}
        severity_breakdown: dict[str, int] = {}
        timeframe_breakdown: dict[str, int] = {}

        # 最近一小时内有告警的交易对都列出来，不只是本批次
        for symbol in self._history:
            hour_count = self.recent_count(symbol, HOUR_MS, now)
            if hour_count > 0:
                stats_map[symbol] = SymbolStats(
                    symbol=symbol,
                    last_hour_count=hour_count,
                    last_day_count=self.recent_count(symbol, DAY_MS, now),
                    recent_types=self.recent_types(symbol, 3, now),
                )

        for alert in alerts:
            stats = stats_map.get(alert.symbol)
            if stats is None:
                stats = SymbolStats(
                    symbol=alert.symbol,
                    last_hour_count=self.recent_count(alert.symbol, HOUR_MS, now),
                    last_day_count=self.recent_count(alert.symbol, DAY_MS, now),
                    recent_types=self.recent_types(alert.symbol, 3, now),
                )
                stats_map[alert.symbol] = stats

            stats.count += 1
            stats.types.add(alert.type.value)
            stats.severities.add(alert.severity.value)

            severity = alert.severity.value
            severity_breakdown[severity] = severity_breakdown.get(severity, 0) + 1
            if alert.timeframe:
                timeframe_breakdown[alert.timeframe] = (
                    timeframe_breakdown.get(alert.timeframe, 0) + 1
                )

        symbol_stats = sorted(stats_map.values(), key=lambda s: s.last_hour_count, reverse=True)

        return AlertSummary(
            total_alerts=len(alerts),
            batch_duration=round((now - batch_start) / 1000),
            symbol_stats=symbol_stats,
            severity_breakdown=severity_breakdown,
            timeframe_breakdown=timeframe_breakdown,
            batch_start_time=batch_start,
            batch_end_time=now,
        )

    def clear(self) -> None:
        self.stop()
        self._history.clear()
