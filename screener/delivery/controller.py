import logging
from collections import deque
from typing import Any, Protocol

from screener.alert.models import Alert
from screener.delivery.batcher import AlertBatcher, AlertSummary

logger = logging.getLogger(__name__)

DEFAULT_ALERT_COOLDOWN = 60
DEFAULT_MAX_ALERTS_PER_SYMBOL = 5


class AlertSink(Protocol):
    name: str
    kind: str  # "notification" | "webhook"

    async def send_summary(self, summary: AlertSummary, alerts: list[Alert]) -> bool: ...


class DeliveryController:
    """
    告警准入：同一交易对冷却期内的数量上限 + 同一 (symbol, type) 冷却

    先记录准入再投递，投递失败不会撤销准入。
    """

    def __init__(
        self,
        alert_cooldown: int = DEFAULT_ALERT_COOLDOWN,
        max_alerts_per_symbol: int = DEFAULT_MAX_ALERTS_PER_SYMBOL,
        batcher: AlertBatcher | None = None,
        sinks: list[AlertSink] | None = None,
        webhook_enabled: bool = True,
    ):
        self.alert_cooldown = DEFAULT_ALERT_COOLDOWN  # 秒
        self.max_alerts_per_symbol = DEFAULT_MAX_ALERTS_PER_SYMBOL
        # 非法值记 warning 并保留默认值
        self.update_settings(
            alert_cooldown=alert_cooldown,
            max_alerts_per_symbol=max_alerts_per_symbol,
        )
        self.webhook_enabled = webhook_enabled
        self.batcher = batcher or AlertBatcher()
        self.sinks: list[AlertSink] = sinks or []
        self._admitted: dict[str, deque[int]] = {}
        self._last_by_type: dict[tuple[str, str], int] = {}
        self.suppressed = 0

        self.batcher.on_batch_ready(self.dispatch)

    @property
    def _cooldown_ms(self) -> int:
        return self.alert_cooldown * 1000

    def admit(self, alert: Alert) -> bool:
        now = alert.timestamp
        key = (alert.symbol, alert.type.value)

        recent = self._admitted.setdefault(alert.symbol, deque())
        while recent and now - recent[0] >= self._cooldown_ms:
            recent.popleft()

        if len(recent) >= self.max_alerts_per_symbol:
            self.suppressed += 1
            logger.debug(f"Suppressed {alert.symbol} {alert.type.value}: symbol cap reached")
            return False

        last = self._last_by_type.get(key)
        if last is not None and now - last < self._cooldown_ms:
            self.suppressed += 1
            logger.debug(f"Suppressed {alert.symbol} {alert.type.value}: cooldown")
            return False

        recent.append(now)
        self._last_by_type[key] = now
        self.batcher.add(alert)
        return True

    def update_settings(self, **partial: Any) -> None:
        cooldown = partial.get("alert_cooldown")
        if cooldown is not None:
            if cooldown < 0:
                logger.warning(f"Invalid alert_cooldown {cooldown}, keeping {self.alert_cooldown}")
            else:
                self.alert_cooldown = int(cooldown)

        cap = partial.get("max_alerts_per_symbol")
        if cap is not None:
            if cap < 1:
                logger.warning(
                    f"Invalid max_alerts_per_symbol {cap}, keeping {self.max_alerts_per_symbol}"
                )
            else:
                self.max_alerts_per_symbol = int(cap)

        window = partial.get("batch_window_ms")
        if window is not None:
            self.batcher.set_batch_window(window)

        webhook_enabled = partial.get("webhook_enabled")
        if webhook_enabled is not None:
            self.webhook_enabled = bool(webhook_enabled)

    def _accepts(self, sink: AlertSink, alert: Alert) -> bool:
        if sink.kind == "webhook":
            # 规则未设置时跟随全局开关
            if alert.webhook_enabled is None:
                return self.webhook_enabled
            return alert.webhook_enabled
        return alert.notification_enabled

    async def dispatch(self, summary: AlertSummary, alerts: list[Alert]) -> dict[str, bool]:
        """按规则的投递开关分发到各个 sink；没有可发内容的 sink 不出现在结果里"""
        results: dict[str, bool] = {}
        for sink in self.sinks:
            selected = [a for a in alerts if self._accepts(sink, a)]
            if not selected:
                continue
            sink_summary = summary
            if len(selected) != len(alerts):
                sink_summary = self.batcher.generate_summary(selected, summary.batch_start_time)

            try:
                results[sink.name] = await sink.send_summary(sink_summary, selected)
            except Exception as e:
                logger.error(f"Sink {sink.name} failed: {e}")
                results[sink.name] = False
        return results

    def stop(self) -> None:
        self.batcher.stop()

    def clear(self) -> None:
        self._admitted.clear()
        self._last_by_type.clear()
        self.suppressed = 0
        self.batcher.clear()
