from collections import deque
from dataclasses import dataclass, field
from typing import Literal

BubbleSide = Literal["buy", "sell"]
BubbleSize = Literal["small", "medium", "large"]


@dataclass
class VolumeHistoryState:
    symbol: str
    vol_5m_history: deque[float] = field(default_factory=deque)
    ema_vol_5m: float = 0.0
    std_vol_5m: float = 0.0
    last_update_5m: int = 0
    vol_15m_history: deque[float] = field(default_factory=deque)
    ema_vol_15m: float = 0.0
    std_vol_15m: float = 0.0
    last_update_15m: int = 0


@dataclass
class Bubble:
    """成交量异常 (z-score 超阈值且价格有方向)"""

    id: str
    symbol: str
    timeframe: Literal["5m", "15m"]
    time: int
    window_start_time: int
    price: float
    start_price: float
    end_price: float
    price_change_pct: float
    side: BubbleSide
    size: BubbleSize
    z_score: float
    quote_volume: float
    volume_ema: float
    volume_std_dev: float


@dataclass
class BubbleStats:
    total_detected: int = 0
    by_5m: int = 0
    by_15m: int = 0
    by_size: dict[str, int] = field(
        default_factory=lambda: {"small": 0, "medium": 0, "large": 0}
    )
    by_side: dict[str, int] = field(default_factory=lambda: {"buy": 0, "sell": 0})
    avg_z_score: float = 0.0
    max_z_score: float = 0.0
