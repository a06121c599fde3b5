# tests/notifier/test_formatter.py
from screener.alert.models import Alert, AlertType, Severity
from screener.delivery.batcher import AlertSummary, SymbolStats
from screener.market.warmup import TimeframeReadiness, WarmupStatus
from screener.notifier.formatter import format_alert, format_summary, format_warmup

T0 = 1_700_000_000_000


def _alert(**kwargs) -> Alert:
    defaults = dict(
        id="r-AAA",
        symbol="AAAUSDT",
        type=AlertType.PIONEER_BULL,
        severity=Severity.CRITICAL,
        title="Pioneer Bull: AAAUSDT",
        message="Price and volume accelerating together",
        value=12000,
        threshold=0,
        timestamp=T0,
        timeframe="3m",
    )
    defaults.update(kwargs)
    return Alert(**defaults)


def test_format_alert():
    msg = format_alert(_alert())

    assert msg.startswith("🔴 <b>Pioneer Bull: AAAUSDT</b> [3m]")
    assert "Price and volume accelerating together" in msg
    assert "2023-11-14 22:13:20 UTC" in msg


def test_format_alert_escapes_html():
    msg = format_alert(_alert(title="A<B", message="x & y", timeframe=None))

    assert "A&lt;B" in msg
    assert "x &amp; y" in msg
    assert "[" not in msg.splitlines()[0]


def test_format_summary():
    summary = AlertSummary(
        total_alerts=3,
        batch_duration=60,
        symbol_stats=[
            SymbolStats(
                symbol="AAAUSDT",
                count=2,
                last_hour_count=4,
                last_day_count=9,
                recent_types=["price_pump", "volume_spike"],
            ),
            SymbolStats(symbol="BBBUSDT", count=0, last_hour_count=1, last_day_count=1),
        ],
        severity_breakdown={"high": 2, "critical": 1},
        timeframe_breakdown={"5m": 3},
        batch_start_time=T0 - 60_000,
        batch_end_time=T0,
    )

    msg = format_summary(summary)

    assert "3 alerts</b> in 60s" in msg
    assert "🔴 critical: 1 | 🟠 high: 2" in msg
    assert "🕐 5m: 3" in msg
    assert "<b>AAAUSDT</b> (+2) 1h: 4 / 24h: 9 · price_pump, volume_spike" in msg
    assert "<b>BBBUSDT</b> 1h: 1 / 24h: 1" in msg


def test_format_summary_truncates_symbol_list():
    summary = AlertSummary(
        total_alerts=12,
        batch_duration=30,
        symbol_stats=[
            SymbolStats(symbol=f"S{i}USDT", count=1, last_hour_count=1, last_day_count=1)
            for i in range(12)
        ],
        severity_breakdown={},
        timeframe_breakdown={},
        batch_start_time=T0,
        batch_end_time=T0,
    )

    msg = format_summary(summary)

    assert "S9USDT" in msg
    assert "S10USDT" not in msg
    assert "还有 2 个交易对" in msg


def test_format_warmup():
    status = WarmupStatus(
        total_symbols=4,
        timeframes={
            "5m": TimeframeReadiness(ready=4, total=4),
            "1h": TimeframeReadiness(ready=1, total=4),
        },
        overall_progress=62.0,
    )

    msg = format_warmup(status)

    assert "Warm-up</b> 62%" in msg
    assert "✅ 5m: 4/4" in msg
    assert "⏳ 1h: 1/4" in msg
