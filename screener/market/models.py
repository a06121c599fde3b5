"""行情快照数据模型"""

from dataclasses import dataclass, field


@dataclass
class FibonacciLevels:
    """斐波那契枢轴位"""

    pivot: float
    resistance1: float
    resistance0618: float
    resistance0382: float
    support0382: float
    support0618: float
    support1: float


@dataclass
class TechnicalIndicators:
    """单个交易对的派生指标"""

    vcp: float
    price_to_weighted_avg: float
    price_to_high: float
    low_to_price: float
    high_to_low: float
    ask_to_volume: float
    price_to_volume: float
    quote_to_count: float
    trades_per_volume: float
    fibonacci: FibonacciLevels
    pivot_to_weighted_avg: float
    pivot_to_price: float
    price_change_from_weighted_avg: float
    price_change_from_prev_close: float
    eth_dominance: float = 0.0
    btc_dominance: float = 0.0
    paxg_dominance: float = 0.0


@dataclass
class HistoryEntry:
    """N 分钟前的快照"""

    price: float
    volume: float  # quote volume
    weighted_avg: float
    price_to_wa: float
    vcp: float
    timestamp: int  # ms


@dataclass
class SymbolSnapshot:
    """交易对当前状态 (24h ticker + 派生指标 + 历史)"""

    symbol: str
    last_price: float
    timestamp: int  # ms
    open_price: float = 0.0
    high_price: float = 0.0
    low_price: float = 0.0
    prev_close_price: float = 0.0
    weighted_avg_price: float = 0.0
    price_change_percent: float = 0.0
    volume: float = 0.0
    quote_volume: float = 0.0
    bid_price: float = 0.0
    bid_qty: float = 0.0
    ask_price: float = 0.0
    ask_qty: float = 0.0
    count: int = 0
    indicators: TechnicalIndicators | None = None
    history: dict[str, HistoryEntry] = field(default_factory=dict)

    @property
    def vcp(self) -> float:
        return self.indicators.vcp if self.indicators else 0.0


@dataclass
class WindowMetrics:
    """滑动窗口聚合 (5m / 15m)"""

    symbol: str
    window_minutes: int
    start_price: float
    end_price: float
    quote_volume: float
    window_start_time: int
    window_end_time: int
    base_volume: float = 0.0

    @property
    def price_change(self) -> float:
        return self.end_price - self.start_price

    @property
    def price_change_percent(self) -> float:
        if self.start_price == 0:
            return 0.0
        return (self.end_price - self.start_price) / self.start_price * 100
