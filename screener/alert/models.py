"""告警规则与告警数据模型"""

import time
from dataclasses import dataclass, field
from enum import Enum

from screener.config import RuleConfig


class AlertType(str, Enum):
    PRICE_PUMP = "price_pump"
    PRICE_DUMP = "price_dump"
    VOLUME_SPIKE = "volume_spike"
    VOLUME_DROP = "volume_drop"
    VCP_SIGNAL = "vcp_signal"
    FIBONACCI_BREAK = "fibonacci_break"
    TREND_REVERSAL = "trend_reversal"
    PIONEER_BULL = "pioneer_bull"
    PIONEER_BEAR = "pioneer_bear"
    BIG_BULL_5M = "5m_big_bull"
    BIG_BEAR_5M = "5m_big_bear"
    BIG_BULL_15M = "15m_big_bull"
    BIG_BEAR_15M = "15m_big_bear"
    BOTTOM_HUNTER = "bottom_hunter"
    TOP_HUNTER = "top_hunter"
    CUSTOM = "custom"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Comparison(str, Enum):
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUALS = "equals"


@dataclass(frozen=True)
class AlertCondition:
    type: AlertType
    threshold: float = 0.0
    comparison: Comparison = Comparison.GREATER_THAN
    timeframe: str | None = None


@dataclass
class AlertRule:
    id: str
    name: str
    conditions: list[AlertCondition]
    severity: Severity = Severity.MEDIUM
    enabled: bool = True
    symbols: list[str] = field(default_factory=list)  # 空 = 全部
    notification_enabled: bool = True
    sound_enabled: bool = False
    webhook_enabled: bool | None = None  # None = 跟随全局设置
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
    last_triggered: int | None = None

    def applies_to(self, symbol: str) -> bool:
        return self.enabled and (not self.symbols or symbol in self.symbols)

    @classmethod
    def from_config(cls, cfg: RuleConfig) -> "AlertRule":
        return cls(
            id=cfg.id,
            name=cfg.name,
            enabled=cfg.enabled,
            symbols=list(cfg.symbols),
            conditions=[
                AlertCondition(
                    type=AlertType(c.type),
                    threshold=c.threshold,
                    comparison=Comparison(c.comparison),
                    timeframe=c.timeframe,
                )
                for c in cfg.conditions
            ],
            severity=Severity(cfg.severity),
            notification_enabled=cfg.notification_enabled,
            sound_enabled=cfg.sound_enabled,
            webhook_enabled=cfg.webhook_enabled,
        )


@dataclass(frozen=True)
class Alert:
    id: str
    symbol: str
    type: AlertType
    severity: Severity
    title: str
    message: str
    value: float
    threshold: float
    timestamp: int  # ms
    timeframe: str | None = None
    read: bool = False
    dismissed: bool = False
    # 来自规则的投递开关
    rule_id: str = ""
    notification_enabled: bool = True
    webhook_enabled: bool | None = None
