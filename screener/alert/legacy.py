"""
旧版组合告警 (Pioneer / Big Bull-Bear / Hunter)

每种告警的阈值是经验值，保持原样，不要"修正"牛熊之间的不对称。
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from screener.alert.models import AlertCondition, AlertRule, AlertType, Severity
from screener.market.models import SymbolSnapshot

# Pioneer: 相对 5m 快照的成交额增量下限 (熊市更宽松)
PIONEER_BULL_MIN_VOLUME_DELTA = 5_000
PIONEER_BEAR_MIN_VOLUME_DELTA = 1_000

# 5m Big: current - v3m, current - v5m
BIG_5M_MIN_DELTA_3M = 100_000
BIG_5M_MIN_DELTA_5M = 50_000

# 15m Big: current - v15m, current - v3m
BIG_15M_MIN_DELTA_15M = 400_000
BIG_15M_MIN_DELTA_3M = 100_000

# Hunter 价格比例
BOTTOM_HUNTER_MAX_RATIO_15M = 0.994
BOTTOM_HUNTER_MAX_RATIO_3M = 0.995
BOTTOM_HUNTER_MIN_RATIO_1M = 1.004
TOP_HUNTER_MIN_RATIO_15M = 1.006
TOP_HUNTER_MIN_RATIO_3M = 1.005
TOP_HUNTER_MIN_RATIO_1M = 0.996

MarketMode = Literal["bull", "bear"]


def _prices(s: SymbolSnapshot, *labels: str) -> list[float] | None:
    values = []
    for label in labels:
        entry = s.history.get(label)
        if entry is None or entry.price <= 0:
            return None
        values.append(entry.price)
    return values


def _volumes(s: SymbolSnapshot, *labels: str) -> list[float] | None:
    values = []
    for label in labels:
        entry = s.history.get(label)
        if entry is None or entry.volume <= 0:
            return None
        values.append(entry.volume)
    return values


def _strictly_increasing(values: list[float]) -> bool:
    return all(a < b for a, b in zip(values, values[1:]))


def _strictly_decreasing(values: list[float]) -> bool:
    return all(a > b for a, b in zip(values, values[1:]))


def volume_acceleration(s: SymbolSnapshot) -> bool:
    """2 * qv / v5m >= qv / v15m"""
    volumes = _volumes(s, "5m", "15m")
    if volumes is None:
        return False
    v5m, v15m = volumes
    return 2 * s.quote_volume / v5m >= s.quote_volume / v15m


def check_pioneer_bull(s: SymbolSnapshot) -> float | None:
    prices = _prices(s, "5m", "15m")
    volumes = _volumes(s, "5m")
    if prices is None or volumes is None:
        return None
    p5m, p15m = prices
    delta = s.quote_volume - volumes[0]
    if s.last_price / p5m > 1 and s.last_price / p15m > 1 and delta > PIONEER_BULL_MIN_VOLUME_DELTA:
        return delta
    return None


def check_pioneer_bear(s: SymbolSnapshot) -> float | None:
    prices = _prices(s, "5m", "15m")
    volumes = _volumes(s, "5m")
    if prices is None or volumes is None or s.last_price <= 0:
        return None
    p5m, p15m = prices
    delta = s.quote_volume - volumes[0]
    if p5m / s.last_price > 1 and p15m / s.last_price > 1 and delta > PIONEER_BEAR_MIN_VOLUME_DELTA:
        return delta
    return None


def _check_big_5m(s: SymbolSnapshot, bullish: bool) -> float | None:
    volumes = _volumes(s, "3m", "1m", "5m")
    prices = _prices(s, "3m", "1m")
    if volumes is None or prices is None:
        return None

    v3m, _, v5m = volumes
    if not _strictly_increasing([*volumes, s.quote_volume]):
        return None
    if s.quote_volume - v3m <= BIG_5M_MIN_DELTA_3M or s.quote_volume - v5m <= BIG_5M_MIN_DELTA_5M:
        return None

    chain = [*prices, s.last_price]
    ordered = _strictly_increasing(chain) if bullish else _strictly_decreasing(chain)
    return s.quote_volume - v3m if ordered else None


def _check_big_15m(s: SymbolSnapshot, bullish: bool) -> float | None:
    volumes = _volumes(s, "15m", "3m", "5m")
    prices = _prices(s, "15m", "3m")
    if volumes is None or prices is None:
        return None

    v15m, v3m, _ = volumes
    if not _strictly_increasing([*volumes, s.quote_volume]):
        return None
    if (
        s.quote_volume - v15m <= BIG_15M_MIN_DELTA_15M
        or s.quote_volume - v3m <= BIG_15M_MIN_DELTA_3M
    ):
        return None

    chain = [*prices, s.last_price]
    ordered = _strictly_increasing(chain) if bullish else _strictly_decreasing(chain)
    return s.quote_volume - v15m if ordered else None


def check_5m_big_bull(s: SymbolSnapshot) -> float | None:
    return _check_big_5m(s, bullish=True)


def check_5m_big_bear(s: SymbolSnapshot) -> float | None:
    return _check_big_5m(s, bullish=False)


def check_15m_big_bull(s: SymbolSnapshot) -> float | None:
    return _check_big_15m(s, bullish=True)


def check_15m_big_bear(s: SymbolSnapshot) -> float | None:
    return _check_big_15m(s, bullish=False)


def check_bottom_hunter(s: SymbolSnapshot) -> float | None:
    """先跌后反弹"""
    prices = _prices(s, "15m", "3m", "1m")
    if prices is None or not volume_acceleration(s):
        return None
    p15m, p3m, p1m = prices
    if (
        s.last_price / p15m < BOTTOM_HUNTER_MAX_RATIO_15M
        and s.last_price / p3m < BOTTOM_HUNTER_MAX_RATIO_3M
        and s.last_price / p1m > BOTTOM_HUNTER_MIN_RATIO_1M
    ):
        return (s.last_price / p1m - 1) * 100
    return None


def check_top_hunter(s: SymbolSnapshot) -> float | None:
    """上涨后放缓"""
    prices = _prices(s, "15m", "3m", "1m")
    if prices is None or not volume_acceleration(s):
        return None
    p15m, p3m, p1m = prices
    if (
        s.last_price / p15m > TOP_HUNTER_MIN_RATIO_15M
        and s.last_price / p3m > TOP_HUNTER_MIN_RATIO_3M
        and s.last_price / p1m > TOP_HUNTER_MIN_RATIO_1M
    ):
        return (s.last_price / p15m - 1) * 100
    return None


@dataclass(frozen=True)
class LegacyHeuristic:
    type: AlertType
    name: str
    description: str
    severity: Severity
    market_mode: Literal["bull", "bear", "both"]
    check: Callable[[SymbolSnapshot], float | None]
    timeframe: str

    def allowed_in(self, mode: MarketMode) -> bool:
        return self.market_mode == "both" or self.market_mode == mode


LEGACY_HEURISTICS: dict[AlertType, LegacyHeuristic] = {
    h.type: h
    for h in [
        LegacyHeuristic(
            AlertType.PIONEER_BULL,
            "Pioneer Bull",
            "Price above 5m and 15m snapshots with rising volume",
            Severity.CRITICAL,
            "bull",
            check_pioneer_bull,
            "5m",
        ),
        LegacyHeuristic(
            AlertType.PIONEER_BEAR,
            "Pioneer Bear",
            "Price below 5m and 15m snapshots with rising volume",
            Severity.CRITICAL,
            "bear",
            check_pioneer_bear,
            "5m",
        ),
        LegacyHeuristic(
            AlertType.BIG_BULL_5M,
            "5m Big Bull",
            "Stair-step volume and price increase over 5 minutes",
            Severity.HIGH,
            "bull",
            check_5m_big_bull,
            "5m",
        ),
        LegacyHeuristic(
            AlertType.BIG_BEAR_5M,
            "5m Big Bear",
            "Stair-step volume increase with falling price over 5 minutes",
            Severity.HIGH,
            "bear",
            check_5m_big_bear,
            "5m",
        ),
        LegacyHeuristic(
            AlertType.BIG_BULL_15M,
            "15m Big Bull",
            "Stair-step volume and price increase over 15 minutes",
            Severity.HIGH,
            "bull",
            check_15m_big_bull,
            "15m",
        ),
        LegacyHeuristic(
            AlertType.BIG_BEAR_15M,
            "15m Big Bear",
            "Stair-step volume increase with falling price over 15 minutes",
            Severity.HIGH,
            "bear",
            check_15m_big_bear,
            "15m",
        ),
        LegacyHeuristic(
            AlertType.BOTTOM_HUNTER,
            "Bottom Hunter",
            "Decline then bounce with accelerating volume",
            Severity.MEDIUM,
            "both",
            check_bottom_hunter,
            "15m",
        ),
        LegacyHeuristic(
            AlertType.TOP_HUNTER,
            "Top Hunter",
            "Rise then stall with accelerating volume",
            Severity.MEDIUM,
            "both",
            check_top_hunter,
            "15m",
        ),
    ]
}


def legacy_preset_rules() -> list[AlertRule]:
    """内置规则: 每种旧版告警一条"""
    return [
        AlertRule(
            id=f"legacy-{h.type.value}",
            name=h.name,
            conditions=[AlertCondition(type=h.type)],
            severity=h.severity,
        )
        for h in LEGACY_HEURISTICS.values()
    ]
