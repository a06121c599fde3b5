import math
import time

from screener.alert.legacy import LEGACY_HEURISTICS, MarketMode
from screener.alert.models import (
    Alert,
    AlertCondition,
    AlertRule,
    AlertType,
    Comparison,
)
from screener.market.models import SymbolSnapshot

DEFAULT_TIMEFRAME = "5m"


def _compare(value: float, threshold: float, comparison: Comparison) -> bool:
    if comparison == Comparison.GREATER_THAN:
        return value > threshold
    if comparison == Comparison.LESS_THAN:
        return value < threshold
    return math.isclose(value, threshold, abs_tol=1e-9)


def _percent_move(current: float, past: float) -> float:
    return (current - past) / past * 100


def _condition_value(
    s: SymbolSnapshot, condition: AlertCondition, mode: MarketMode
) -> float | None:
    """返回条件的触发值；None 表示条件不成立 (含历史不足)"""
    heuristic = LEGACY_HEURISTICS.get(condition.type)
    if heuristic is not None:
        if not heuristic.allowed_in(mode):
            return None
        return heuristic.check(s)

    if condition.type == AlertType.VCP_SIGNAL:
        value = s.vcp
    elif condition.type == AlertType.FIBONACCI_BREAK:
        value = s.last_price
    else:
        past = s.history.get(condition.timeframe or DEFAULT_TIMEFRAME)
        if past is None:
            return None

        if condition.type == AlertType.PRICE_PUMP:
            if past.price <= 0:
                return None
            value = _percent_move(s.last_price, past.price)
        elif condition.type == AlertType.PRICE_DUMP:
            if past.price <= 0:
                return None
            value = (past.price - s.last_price) / past.price * 100
        elif condition.type == AlertType.VOLUME_SPIKE:
            value = s.quote_volume - past.volume
        elif condition.type == AlertType.VOLUME_DROP:
            value = past.volume - s.quote_volume
        elif condition.type == AlertType.TREND_REVERSAL:
            recent = s.history.get("1m")
            if recent is None or recent.price <= 0 or past.price <= 0:
                return None
            move_1m = _percent_move(s.last_price, recent.price)
            move_tf = _percent_move(s.last_price, past.price)
            # 1m 方向与长周期方向相反才算反转
            if move_1m * move_tf >= 0:
                return None
            value = abs(move_1m)
        else:
            return None

    if not _compare(value, condition.threshold, condition.comparison):
        return None
    return value


PERCENT_TYPES = {
    AlertType.PRICE_PUMP,
    AlertType.PRICE_DUMP,
    AlertType.TREND_REVERSAL,
    AlertType.BOTTOM_HUNTER,
    AlertType.TOP_HUNTER,
}
VOLUME_TYPES = {
    AlertType.VOLUME_SPIKE,
    AlertType.VOLUME_DROP,
    AlertType.PIONEER_BULL,
    AlertType.PIONEER_BEAR,
    AlertType.BIG_BULL_5M,
    AlertType.BIG_BEAR_5M,
    AlertType.BIG_BULL_15M,
    AlertType.BIG_BEAR_15M,
}


def _format_value(alert_type: AlertType, value: float) -> str:
    if alert_type in PERCENT_TYPES:
        return f"{value:.2f}%"
    if alert_type in VOLUME_TYPES:
        return f"${value:,.0f}"
    return f"{value:.3f}"


def _build_alert(
    s: SymbolSnapshot,
    rule: AlertRule,
    values: list[float],
    now: int,
) -> Alert:
    first = rule.conditions[0]
    if len(rule.conditions) == 1:
        alert_type = first.type
    else:
        alert_type = AlertType.CUSTOM

    heuristic = LEGACY_HEURISTICS.get(first.type)
    if first.timeframe:
        timeframe = first.timeframe
    elif heuristic is not None:
        timeframe = heuristic.timeframe
    elif first.type in (AlertType.VCP_SIGNAL, AlertType.FIBONACCI_BREAK):
        timeframe = None
    else:
        timeframe = DEFAULT_TIMEFRAME

    value = values[0]
    if heuristic is not None and len(rule.conditions) == 1:
        message = f"{heuristic.description} ({_format_value(first.type, value)})"
    else:
        parts = [
            f"{c.type.value} {_format_value(c.type, v)}" for c, v in zip(rule.conditions, values)
        ]
        message = ", ".join(parts)

    return Alert(
        id=f"{rule.id}-{s.symbol}-{now}",
        symbol=s.symbol,
        type=alert_type,
        severity=rule.severity,
        title=f"{rule.name}: {s.symbol}",
        message=message,
        value=value,
        threshold=first.threshold,
        timeframe=timeframe,
        timestamp=now,
        rule_id=rule.id,
        notification_enabled=rule.notification_enabled,
        webhook_enabled=rule.webhook_enabled,
    )


def evaluate(
    snapshots: list[SymbolSnapshot],
    rules: list[AlertRule],
    market_mode: MarketMode,
    now: int | None = None,
) -> list[Alert]:
    """
    对每个交易对依次评估所有启用的规则 (条件之间为 AND)

    不修改 snapshots 和 rules；同样的输入得到同样的告警 (id / timestamp 除外)
    """
    now = now if now is not None else int(time.time() * 1000)
    alerts: list[Alert] = []

    for s in snapshots:
        for rule in rules:
            if not rule.conditions or not rule.applies_to(s.symbol):
                continue

            values: list[float] = []
            for condition in rule.conditions:
                value = _condition_value(s, condition, market_mode)
                if value is None:
                    break
                values.append(value)
            else:
                alerts.append(_build_alert(s, rule, values, now))

    return alerts
