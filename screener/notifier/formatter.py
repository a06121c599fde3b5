# screener/notifier/formatter.py
from datetime import UTC, datetime
from html import escape

from screener.alert.models import Alert, Severity
from screener.delivery.batcher import AlertSummary
from screener.market.warmup import WarmupStatus

SEVERITY_EMOJI = {
    Severity.LOW.value: "🔵",
    Severity.MEDIUM.value: "🟡",
    Severity.HIGH.value: "🟠",
    Severity.CRITICAL.value: "🔴",
}

MAX_SYMBOLS_IN_SUMMARY = 10


def _format_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_alert(alert: Alert) -> str:
    emoji = SEVERITY_EMOJI.get(alert.severity.value, "⚪")
    timeframe = f" [{alert.timeframe}]" if alert.timeframe else ""
    return (
        f"{emoji} <b>{escape(alert.title)}</b>{timeframe}\n"
        f"{escape(alert.message)}\n"
        f"⏰ {_format_time(alert.timestamp)}"
    )


def format_summary(summary: AlertSummary) -> str:
    lines = [
        f"📦 <b>{summary.total_alerts} alerts</b> in {summary.batch_duration}s",
        f"⏰ {_format_time(summary.batch_end_time)}",
        "",
    ]

    if summary.severity_breakdown:
        parts = [
            f"{SEVERITY_EMOJI.get(sev, '⚪')} {sev}: {count}"
            for sev, count in sorted(summary.severity_breakdown.items())
        ]
        lines.append(" | ".join(parts))

    if summary.timeframe_breakdown:
        parts = [f"{tf}: {count}" for tf, count in summary.timeframe_breakdown.items()]
        lines.append("🕐 " + " | ".join(parts))

    lines.append("━━━━━━━━━━━━━━━━━━━━")
    lines.append("<b>Most active (1h)</b>")
    for stats in summary.symbol_stats[:MAX_SYMBOLS_IN_SUMMARY]:
        recent = ", ".join(stats.recent_types)
        batch = f" (+{stats.count})" if stats.count else ""
        lines.append(
            f"• <b>{escape(stats.symbol)}</b>{batch} "
            f"1h: {stats.last_hour_count} / 24h: {stats.last_day_count}"
            + (f" · {recent}" if recent else "")
        )

    hidden = len(summary.symbol_stats) - MAX_SYMBOLS_IN_SUMMARY
    if hidden > 0:
        lines.append(f"… 还有 {hidden} 个交易对")

    return "\n".join(lines)


def format_warmup(status: WarmupStatus) -> str:
    lines = [
        f"🔥 <b>Warm-up</b> {status.overall_progress:.0f}%",
        f"交易对: {status.total_symbols}",
    ]
    for label, readiness in status.timeframes.items():
        mark = "✅" if readiness.total and readiness.ready == readiness.total else "⏳"
        lines.append(f"{mark} {label}: {readiness.ready}/{readiness.total}")
    return "\n".join(lines)
