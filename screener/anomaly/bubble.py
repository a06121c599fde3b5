import logging
import math
from collections import deque
from typing import Any

from screener.anomaly.models import Bubble, BubbleSize, BubbleStats, VolumeHistoryState
from screener.config import BubbleConfig
from screener.market.models import WindowMetrics

logger = logging.getLogger(__name__)

# 每个交易对约 1.16 KB
BYTES_PER_SYMBOL = 1160


def calculate_ema(values: list[float], period: int) -> float:
    """
    历史不足 period 时用简单均值；否则前 period 个做 SMA 种子，再递推
    ema = v * k + ema * (1 - k), k = 2 / (period + 1)
    """
    if not values:
        return 0.0
    if len(values) < period:
        return sum(values) / len(values)

    k = 2 / (period + 1)
    ema = sum(values[:period]) / period
    for v in values[period:]:
        ema = v * k + ema * (1 - k)
    return ema


def calculate_std_dev(values: list[float], mean: float) -> float:
    """总体标准差 (围绕给定均值)"""
    if len(values) < 2:
        return 0.0
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class BubbleDetector:
    def __init__(self, config: BubbleConfig | None = None):
        self.config = config or BubbleConfig()
        self._states: dict[str, VolumeHistoryState] = {}

    def _state(self, symbol: str) -> VolumeHistoryState:
        state = self._states.get(symbol)
        if state is None:
            state = VolumeHistoryState(
                symbol=symbol,
                vol_5m_history=deque(maxlen=self.config.history_length_5m),
                vol_15m_history=deque(maxlen=self.config.history_length_15m),
            )
            self._states[symbol] = state
        return state

    def detect_bubbles(
        self, symbol: str, m5: WindowMetrics, m15: WindowMetrics, timestamp: int
    ) -> list[Bubble]:
        state = self._state(symbol)
        bubbles: list[Bubble] = []

        for timeframe, metrics in (("5m", m5), ("15m", m15)):
            bubble = self._process_timeframe(state, metrics, timeframe, timestamp)
            if bubble:
                logger.debug(
                    f"Bubble {bubble.symbol} {timeframe} {bubble.side}/{bubble.size} "
                    f"z={bubble.z_score:.2f}"
                )
                bubbles.append(bubble)

        return bubbles

    def _process_timeframe(
        self,
        state: VolumeHistoryState,
        metrics: WindowMetrics,
        timeframe: str,
        timestamp: int,
    ) -> Bubble | None:
        cfg = self.config
        if timeframe == "5m":
            thresholds = cfg.thresholds_5m
            history_length, ema_period, min_history = (
                cfg.history_length_5m,
                cfg.ema_period_5m,
                cfg.min_history_length_5m,
            )
            history = state.vol_5m_history
        else:
            thresholds = cfg.thresholds_15m
            history_length, ema_period, min_history = (
                cfg.history_length_15m,
                cfg.ema_period_15m,
                cfg.min_history_length_15m,
            )
            history = state.vol_15m_history

        # 配置变更后按新容量重建
        if history.maxlen != history_length:
            history = deque(history, maxlen=history_length)
            if timeframe == "5m":
                state.vol_5m_history = history
            else:
                state.vol_15m_history = history

        volume = metrics.quote_volume
        history.append(volume)

        if len(history) < min_history:
            return None

        values = list(history)
        ema = calculate_ema(values, ema_period)
        std = calculate_std_dev(values, ema)

        if timeframe == "5m":
            state.ema_vol_5m, state.std_vol_5m, state.last_update_5m = ema, std, timestamp
        else:
            state.ema_vol_15m, state.std_vol_15m, state.last_update_15m = ema, std, timestamp

        z_score = (volume - ema) / std if std > 0 else 0.0

        size: BubbleSize | None = None
        if z_score >= thresholds.large_z_score:
            size = "large"
        elif z_score >= thresholds.medium_z_score:
            size = "medium"
        elif z_score >= thresholds.small_z_score:
            size = "small"
        if size is None:
            return None

        price_change_pct = metrics.price_change_percent
        # 只有量没有价格方向，不算
        if abs(price_change_pct) < thresholds.min_price_change_pct:
            return None
        side = "buy" if price_change_pct > 0 else "sell"

        return Bubble(
            id=f"{state.symbol}-{timeframe}-{timestamp}",
            symbol=state.symbol,
            timeframe=timeframe,  # type: ignore[arg-type]
            time=timestamp,
            window_start_time=metrics.window_start_time,
            price=metrics.end_price if side == "buy" else metrics.start_price,
            start_price=metrics.start_price,
            end_price=metrics.end_price,
            price_change_pct=price_change_pct,
            side=side,
            size=size,
            z_score=z_score,
            quote_volume=volume,
            volume_ema=ema,
            volume_std_dev=std,
        )

    def get_symbol_state(self, symbol: str) -> VolumeHistoryState | None:
        return self._states.get(symbol)

    def get_all_states(self) -> dict[str, VolumeHistoryState]:
        return dict(self._states)

    def get_config(self) -> BubbleConfig:
        return self.config.model_copy(deep=True)

    def update_config(self, partial: dict[str, Any]) -> None:
        """合并部分配置，未指定的字段保持不变"""
        merged = _deep_merge(self.config.model_dump(), partial)
        self.config = BubbleConfig.model_validate(merged)
        logger.info(f"Bubble config updated: {partial}")

    def clear(self) -> None:
        self._states.clear()

    def get_memory_usage(self) -> dict[str, float]:
        symbols = len(self._states)
        total_length = sum(
            len(s.vol_5m_history) + len(s.vol_15m_history) for s in self._states.values()
        )
        return {
            "symbols": symbols,
            "estimated_bytes": symbols * BYTES_PER_SYMBOL,
            "average_history_length": total_length / (symbols * 2) if symbols else 0.0,
        }


def bubble_stats(bubbles: list[Bubble]) -> BubbleStats:
    stats = BubbleStats(total_detected=len(bubbles))
    if not bubbles:
        return stats

    for b in bubbles:
        if b.timeframe == "5m":
            stats.by_5m += 1
        else:
            stats.by_15m += 1
        stats.by_size[b.size] += 1
        stats.by_side[b.side] += 1

    z_scores = [b.z_score for b in bubbles]
    stats.avg_z_score = sum(z_scores) / len(z_scores)
    stats.max_z_score = max(z_scores)
    return stats
