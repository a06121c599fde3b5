# tests/anomaly/test_bubble.py
import pytest

from screener.anomaly.bubble import (
    BubbleDetector,
    bubble_stats,
    calculate_ema,
    calculate_std_dev,
)
from screener.market.models import WindowMetrics

T0 = 1_700_000_000_000


def _window(
    minutes: int,
    quote_volume: float,
    start_price: float = 100.0,
    end_price: float = 100.0,
    symbol: str = "BTCUSDT",
) -> WindowMetrics:
    return WindowMetrics(
        symbol=symbol,
        window_minutes=minutes,
        start_price=start_price,
        end_price=end_price,
        quote_volume=quote_volume,
        window_start_time=T0 - minutes * 60_000,
        window_end_time=T0,
    )


def _push(detector: BubbleDetector, count: int, volume: float, symbol: str = "BTCUSDT"):
    bubbles = []
    for i in range(count):
        bubbles.extend(
            detector.detect_bubbles(
                symbol,
                _window(5, volume, symbol=symbol),
                _window(15, volume, symbol=symbol),
                T0 + i * 60_000,
            )
        )
    return bubbles


def test_ema_uses_simple_average_for_short_history():
    assert calculate_ema([1, 2, 3], period=5) == 2
    assert calculate_ema([], period=5) == 0


def test_ema_recurrence_after_period():
    # 种子 = mean(1, 2, 3) = 2, k = 0.5 -> 4 * 0.5 + 2 * 0.5
    assert calculate_ema([1, 2, 3, 4], period=3) == 3


def test_std_dev():
    assert calculate_std_dev([5], 5) == 0
    assert calculate_std_dev([2, 4, 4, 4, 5, 5, 7, 9], 5) == 2


def test_no_bubbles_below_min_history():
    detector = BubbleDetector()
    _push(detector, 18, 100000)

    # 第 19 个样本，巨量也不应触发
    bubbles = detector.detect_bubbles(
        "BTCUSDT",
        _window(5, 10_000_000, 100, 110),
        _window(15, 10_000_000, 100, 110),
        T0,
    )
    assert bubbles == []


def test_buy_bubble_on_volume_spike():
    detector = BubbleDetector()
    assert _push(detector, 25, 100000) == []

    bubbles = detector.detect_bubbles(
        "BTCUSDT",
        _window(5, 110000, 100, 110),
        _window(15, 110000, 100, 110),
        T0 + 30 * 60_000,
    )

    assert len(bubbles) == 2
    b5 = bubbles[0]
    assert b5.timeframe == "5m"
    assert b5.side == "buy"
    assert b5.size == "large"
    assert b5.z_score >= 3.5
    assert b5.price == 110
    assert b5.price_change_pct == pytest.approx(10)
    assert b5.id == f"BTCUSDT-5m-{T0 + 30 * 60_000}"
    assert bubbles[1].timeframe == "15m"


def test_sell_bubble_uses_start_price():
    detector = BubbleDetector()
    _push(detector, 25, 100000)

    bubbles = detector.detect_bubbles(
        "BTCUSDT",
        _window(5, 110000, 100, 95),
        _window(15, 100000, 100, 95),
        T0,
    )

    assert len(bubbles) == 1
    assert bubbles[0].side == "sell"
    assert bubbles[0].price == 100


def test_spike_without_price_move_is_suppressed():
    detector = BubbleDetector()
    _push(detector, 25, 100000)

    bubbles = detector.detect_bubbles(
        "BTCUSDT",
        _window(5, 500000, 100, 100.05),
        _window(15, 500000, 100, 100.05),
        T0,
    )
    assert bubbles == []


def test_history_is_bounded():
    detector = BubbleDetector()
    _push(detector, 100, 100000)

    state = detector.get_symbol_state("BTCUSDT")
    assert state is not None
    assert len(state.vol_5m_history) == 60
    assert len(state.vol_15m_history) == 80
    assert state.ema_vol_5m == 100000
    assert state.std_vol_5m == 0


def test_update_config_merges_partial_thresholds():
    detector = BubbleDetector()
    detector.update_config({"thresholds_5m": {"large_z_score": 5.0}, "min_history_length_5m": 10})

    config = detector.get_config()
    assert config.thresholds_5m.large_z_score == 5.0
    assert config.thresholds_5m.medium_z_score == 2.5
    assert config.thresholds_15m.large_z_score == 3.0
    assert config.min_history_length_5m == 10
    assert config.history_length_5m == 60


def test_update_config_resizes_history():
    detector = BubbleDetector()
    _push(detector, 50, 100000)
    detector.update_config({"history_length_5m": 30})
    _push(detector, 1, 100000)

    state = detector.get_symbol_state("BTCUSDT")
    assert state is not None
    assert len(state.vol_5m_history) == 30


def test_clear_and_memory_usage():
    detector = BubbleDetector()
    _push(detector, 10, 100000, symbol="AAA")
    _push(detector, 10, 100000, symbol="BBB")

    usage = detector.get_memory_usage()
    assert usage["symbols"] == 2
    assert usage["estimated_bytes"] == 2 * 1160
    assert usage["average_history_length"] == 10
    assert set(detector.get_all_states()) == {"AAA", "BBB"}

    detector.clear()
    assert detector.get_memory_usage()["symbols"] == 0
    assert detector.get_symbol_state("AAA") is None


def test_bubble_stats():
    detector = BubbleDetector()
    _push(detector, 25, 100000)
    bubbles = detector.detect_bubbles(
        "BTCUSDT",
        _window(5, 110000, 100, 110),
        _window(15, 110000, 100, 90),
        T0,
    )

    stats = bubble_stats(bubbles)
    assert stats.total_detected == 2
    assert stats.by_5m == 1
    assert stats.by_15m == 1
    assert stats.by_side == {"buy": 1, "sell": 1}
    assert stats.max_z_score == max(b.z_score for b in bubbles)

    empty = bubble_stats([])
    assert empty.total_detected == 0
    assert empty.avg_z_score == 0
