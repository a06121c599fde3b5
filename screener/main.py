import asyncio
import logging
import signal
import time
from collections import deque
from pathlib import Path

from screener.alert.evaluator import evaluate
from screener.alert.legacy import legacy_preset_rules
from screener.alert.models import Alert, AlertRule
from screener.anomaly.bubble import BubbleDetector, bubble_stats
from screener.anomaly.models import Bubble
from screener.collector.ticker_poller import TickerPoller
from screener.config import Config, load_config
from screener.delivery.batcher import AlertBatcher
from screener.delivery.controller import AlertSink, DeliveryController
from screener.market.indicators import apply_indicators, calculate_market_dominance
from screener.market.models import SymbolSnapshot, WindowMetrics
from screener.market.snapshot_tracker import SnapshotTracker
from screener.market.warmup import WarmupStatus, WarmupTracker
from screener.notifier.formatter import format_warmup
from screener.notifier.telegram import TelegramNotifier
from screener.notifier.webhook import WebhookNotifier
from screener.storage.database import KeyValueStore
from screener.storage.history import AlertHistory

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

MAX_RECENT_BUBBLES = 500
MOVER_TIMEFRAMES = ("5m", "15m")
MAX_MOVERS = 3


class ScreenerEngine:
    def __init__(self, config: Config):
        self.config = config
        self.tracker = SnapshotTracker(config.snapshots.offsets)
        self.detector = BubbleDetector(config.bubbles)
        self.warmup = WarmupTracker()
        self.warmup_status: WarmupStatus | None = None

        self.rules: list[AlertRule] = [AlertRule.from_config(r) for r in config.rules]
        if config.legacy_presets:
            self.rules.extend(legacy_preset_rules())
        self._rules_by_id = {r.id: r for r in self.rules}

        self.store = KeyValueStore(config.database.path)
        self.history = AlertHistory(self.store, config.database.max_history_items)

        self.notifier: TelegramNotifier | None = None
        if config.telegram:
            self.notifier = TelegramNotifier(config.telegram.bot_token, config.telegram.chat_id)
        self.webhooks = [
            WebhookNotifier(name=w.name, url=w.url, type=w.type, enabled=w.enabled)
            for w in config.webhooks
        ]

        sinks: list[AlertSink] = [w for w in self.webhooks if w.enabled]
        if self.notifier:
            sinks.insert(0, self.notifier)
        self.delivery = DeliveryController(
            alert_cooldown=config.delivery.alert_cooldown,
            max_alerts_per_symbol=config.delivery.max_alerts_per_symbol,
            batcher=AlertBatcher(config.delivery.batch_window_ms),
            sinks=sinks,
            webhook_enabled=config.delivery.webhook_enabled,
        )

        self.poller = TickerPoller(
            exchange_id=config.exchange,
            symbols=config.symbols,
            quote_asset=config.quote_asset,
            interval_seconds=config.poll_interval_seconds,
            on_snapshots=self.on_tick,
            on_new_symbol=self.warmup.subscribe,
        )

        self.latest: dict[str, SymbolSnapshot] = {}
        self.bubbles: deque[Bubble] = deque(maxlen=MAX_RECENT_BUBBLES)
        self.running = False
        self.start_time = time.time()

    async def init(self) -> None:
        Path(self.config.database.path).parent.mkdir(parents=True, exist_ok=True)
        await self.store.init()
        for webhook in self.webhooks:
            await webhook.init()

        if self.notifier:
            self.notifier.on_status = self._on_status
            self.notifier.on_stats = self._on_stats

    async def on_tick(self, snapshots: list[SymbolSnapshot]) -> list[Alert]:
        """一轮行情: 指标 -> 历史 -> 规则 -> 准入 -> 历史记录/批量推送"""
        apply_indicators(snapshots, self.config.quote_asset)
        fresh: list[SymbolSnapshot] = []
        for s in snapshots:
            # 乱序 / 重复的快照不参与本轮评估
            if not self.tracker.update(s.symbol, s):
                continue
            self.tracker.attach(s)
            self.latest[s.symbol] = s
            fresh.append(s)

        alerts = evaluate(fresh, self.rules, self.config.market_mode)

        admitted: list[Alert] = []
        for alert in alerts:
            if not self.delivery.admit(alert):
                continue
            admitted.append(alert)
            rule = self._rules_by_id.get(alert.rule_id)
            if rule is not None:
                rule.last_triggered = alert.timestamp
            try:
                await self.history.add(alert)
            except Exception as e:
                logger.error(f"Failed to record alert {alert.id}: {e}")

        if admitted:
            logger.info(f"{len(admitted)}/{len(alerts)} alerts admitted")
        return admitted

    def on_window_close(
        self, symbol: str, m5: WindowMetrics, m15: WindowMetrics, timestamp: int
    ) -> list[Bubble]:
        bubbles = self.detector.detect_bubbles(symbol, m5, m15, timestamp)
        for bubble in bubbles:
            self.bubbles.append(bubble)
            logger.info(
                f"Bubble: {bubble.symbol} {bubble.timeframe} {bubble.side} {bubble.size} "
                f"z={bubble.z_score:.2f} ${bubble.quote_volume:,.0f}"
            )
        return bubbles

    def _window_metrics(self, symbol: str, minutes: int) -> WindowMetrics | None:
        latest = self.tracker.latest(symbol)
        start = self.tracker.get(symbol, minutes * 60_000)
        if latest is None or start is None:
            return None
        return WindowMetrics(
            symbol=symbol,
            window_minutes=minutes,
            start_price=start.price,
            end_price=latest.price,
            # 24h 成交额的差值近似窗口成交额
            quote_volume=max(latest.volume - start.volume, 0.0),
            window_start_time=start.timestamp,
            window_end_time=latest.timestamp,
        )

    async def _close_windows(self) -> None:
        """每分钟收盘一次 5m / 15m 窗口"""
        while self.running:
            await asyncio.sleep(60)
            try:
                now = int(time.time() * 1000)
                for symbol in self.tracker.symbols():
                    m5 = self._window_metrics(symbol, 5)
                    m15 = self._window_metrics(symbol, 15)
                    if m5 and m15:
                        self.on_window_close(symbol, m5, m15, now)
            except Exception as e:
                logger.error(f"Failed to close windows: {e}")

    def update_warmup(self, now: int | None = None) -> WarmupStatus:
        """刷新预热状态；新交易对加入后会重新回到未完成"""
        was_complete = self.warmup_status is not None and self.warmup_status.complete
        self.warmup_status = self.warmup.status(now=now)
        if self.warmup_status.complete and not was_complete:
            logger.info("Fully warmed up, all timeframes ready")
        return self.warmup_status

    def price_changes(self, symbol: str, now: int | None = None) -> dict[str, float | None]:
        """各周期涨跌幅 (%)，预热未完成的周期为 None"""
        latest = self.latest.get(symbol)
        if latest is None:
            return {}
        changes: dict[str, float] = {}
        for label in MOVER_TIMEFRAMES:
            past = self.tracker.get(symbol, label)
            if past is not None and past.price > 0:
                changes[label] = (latest.last_price - past.price) / past.price * 100
        return self.warmup.gate(symbol, changes, now)

    async def _poll_warmup(self) -> None:
        interval = self.config.warmup.poll_seconds
        while self.running:
            await asyncio.sleep(interval)
            try:
                self.update_warmup()
            except Exception as e:
                logger.error(f"Failed to update warm-up status: {e}")

    def _format_movers(self, now: int | None = None) -> str:
        rows = []
        for symbol in self.latest:
            changes = self.price_changes(symbol, now)
            move = changes.get("5m")
            if move is not None:
                rows.append((abs(move), symbol, changes))
        rows.sort(key=lambda r: r[0], reverse=True)

        lines = []
        for _, symbol, changes in rows[:MAX_MOVERS]:
            parts = []
            for label in MOVER_TIMEFRAMES:
                value = changes.get(label)
                parts.append(f"{label} {value:+.2f}%" if value is not None else f"{label} n/a")
            lines.append(f"• {symbol}: " + " | ".join(parts))
        return "\n".join(lines) if lines else "暂无数据"

    async def _on_status(self) -> str:
        uptime = time.time() - self.start_time
        days = int(uptime // 86400)
        hours = int((uptime % 86400) // 3600)
        minutes = int((uptime % 3600) // 60)

        status = self.update_warmup()
        dominance = calculate_market_dominance(list(self.latest.values()), self.config.quote_asset)
        stats = bubble_stats(list(self.bubbles))

        return f"""🔧 系统状态

运行时间: {days}d {hours}h {minutes}m
市场模式: {self.config.market_mode}
规则数: {len(self.rules)} | 已抑制: {self.delivery.suppressed}

{format_warmup(status)}

BTC {dominance["btc_dominance"]:.1f}% | ETH {dominance["eth_dominance"]:.1f}%
Bubbles: {stats.total_detected} (5m {stats.by_5m} / 15m {stats.by_15m})

异动 (5m):
{self._format_movers()}
"""

    async def _on_stats(self) -> str:
        stats = await self.history.stats()
        if stats.total == 0:
            return "暂无告警记录"

        lines = [
            "📊 <b>告警统计</b>",
            f"总数: {stats.total} | 24h: {stats.last_24h} | 7d: {stats.last_week}",
            f"最活跃: {stats.most_active_symbol}",
            "",
        ]
        for alert_type, count in sorted(stats.by_type.items(), key=lambda x: -x[1]):
            lines.append(f"• {alert_type}: {count}")
        return "\n".join(lines)

    async def run(self) -> None:
        await self.init()
        self.running = True

        await self.poller.start()
        if self.notifier:
            await self.notifier.start_polling()

        tasks = [
            asyncio.create_task(self._close_windows()),
            asyncio.create_task(self._poll_warmup()),
        ]

        logger.info(f"Pair Screener started with {len(self.rules)} rules")

        # Wait for shutdown signal
        stop_event = asyncio.Event()
        loop = asyncio.get_event_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await stop_event.wait()

        # Cleanup
        self.running = False
        for task in tasks:
            task.cancel()
        self.delivery.stop()
        await self.poller.stop()
        if self.notifier:
            await self.notifier.stop_polling()
        for webhook in self.webhooks:
            await webhook.close()
        await self.store.close()

        logger.info("Pair Screener stopped")


async def main() -> None:
    config = load_config(Path("config.yaml"))
    engine = ScreenerEngine(config)
    await engine.run()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
