# screener/config.py
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field


class SnapshotConfig(BaseModel):
    offsets: list[str] = ["5s", "15s", "30s", "1m", "3m", "5m", "15m"]


class DeliveryConfig(BaseModel):
    alert_cooldown: int = Field(default=60, ge=0)  # 秒
    max_alerts_per_symbol: int = Field(default=5, ge=1)
    batch_window_ms: int = Field(default=60_000, ge=10_000, le=300_000)
    webhook_enabled: bool = True  # 全局开关，规则可单独覆盖


class BubbleThresholds(BaseModel):
    large_z_score: float
    medium_z_score: float
    small_z_score: float
    min_price_change_pct: float = 0.1


class BubbleConfig(BaseModel):
    thresholds_5m: BubbleThresholds = BubbleThresholds(
        large_z_score=3.5, medium_z_score=2.5, small_z_score=1.5
    )
    thresholds_15m: BubbleThresholds = BubbleThresholds(
        large_z_score=3.0, medium_z_score=2.0, small_z_score=1.2
    )
    history_length_5m: int = 60
    history_length_15m: int = 80
    ema_period_5m: int = 60
    ema_period_15m: int = 80
    min_history_length_5m: int = 20
    min_history_length_15m: int = 20


class WarmupConfig(BaseModel):
    poll_seconds: int = 5


class TelegramConfig(BaseModel):
    bot_token: str
    chat_id: str


class WebhookConfig(BaseModel):
    name: str
    type: Literal["discord", "telegram"] = "discord"
    url: str
    enabled: bool = True


class DatabaseConfig(BaseModel):
    path: str = "data/alerts.db"
    max_history_items: int = 1000


class ConditionConfig(BaseModel):
    type: str
    threshold: float = 0
    comparison: Literal["greater_than", "less_than", "equals"] = "greater_than"
    timeframe: str | None = None


class RuleConfig(BaseModel):
    id: str
    name: str
    enabled: bool = True
    symbols: list[str] = []
    conditions: list[ConditionConfig]
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    notification_enabled: bool = True
    sound_enabled: bool = False
    webhook_enabled: bool | None = None


class Config(BaseModel):
    symbols: list[str] = []  # 空 = 交易所全部 USDT 交易对
    quote_asset: str = "USDT"
    exchange: str = "binanceusdm"
    market_mode: Literal["bull", "bear"] = "bull"
    poll_interval_seconds: int = 5
    snapshots: SnapshotConfig = SnapshotConfig()
    delivery: DeliveryConfig = DeliveryConfig()
    bubbles: BubbleConfig = BubbleConfig()
    warmup: WarmupConfig = WarmupConfig()
    telegram: TelegramConfig | None = None
    webhooks: list[WebhookConfig] = []
    database: DatabaseConfig = DatabaseConfig()
    legacy_presets: bool = True
    rules: list[RuleConfig] = []


def load_config(path: Path) -> Config:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return Config(**data)
