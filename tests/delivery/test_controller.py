# tests/delivery/test_controller.py
import logging
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

from screener.alert.models import Alert, AlertType, Severity
from screener.delivery.batcher import AlertBatcher
from screener.delivery.controller import DeliveryController

T0 = 1_700_000_000_000


def _alert(
    symbol: str = "BTCUSDT",
    alert_type: AlertType = AlertType.PRICE_PUMP,
    offset_s: int = 0,
) -> Alert:
    ts = T0 + offset_s * 1000
    return Alert(
        id=f"r-{symbol}-{ts}",
        symbol=symbol,
        type=alert_type,
        severity=Severity.HIGH,
        title=f"Pump: {symbol}",
        message="price_pump 2.00%",
        value=2.0,
        threshold=1.0,
        timestamp=ts,
        timeframe="5m",
    )


def _controller(**kwargs) -> DeliveryController:
    return DeliveryController(batcher=AlertBatcher(clock=lambda: T0), **kwargs)


def test_same_type_within_cooldown_is_suppressed():
    ctrl = _controller(alert_cooldown=60)

    assert ctrl.admit(_alert(offset_s=0))
    assert not ctrl.admit(_alert(offset_s=10))
    assert ctrl.suppressed == 1


def test_same_type_after_cooldown_is_admitted():
    ctrl = _controller(alert_cooldown=60)

    assert ctrl.admit(_alert(offset_s=0))
    assert ctrl.admit(_alert(offset_s=61))


def test_cooldown_is_per_symbol_and_type():
    ctrl = _controller(alert_cooldown=60)

    assert ctrl.admit(_alert("BTCUSDT", AlertType.PRICE_PUMP))
    assert ctrl.admit(_alert("BTCUSDT", AlertType.VOLUME_SPIKE))
    assert ctrl.admit(_alert("ETHUSDT", AlertType.PRICE_PUMP))


def test_symbol_cap_within_window():
    ctrl = _controller(alert_cooldown=60, max_alerts_per_symbol=2)

    assert ctrl.admit(_alert(alert_type=AlertType.PRICE_PUMP, offset_s=0))
    assert ctrl.admit(_alert(alert_type=AlertType.VOLUME_SPIKE, offset_s=1))
    assert not ctrl.admit(_alert(alert_type=AlertType.VCP_SIGNAL, offset_s=2))
    # 窗口滚动后恢复
    assert ctrl.admit(_alert(alert_type=AlertType.VCP_SIGNAL, offset_s=61))


def test_admitted_alerts_are_batched():
    ctrl = _controller()
    ctrl.admit(_alert("AAA"))
    ctrl.admit(_alert("BBB"))
    ctrl.admit(_alert("AAA", offset_s=5))  # 冷却中

    assert ctrl.batcher.batch_size == 2


def test_update_settings_rejects_invalid(caplog):
    ctrl = _controller(alert_cooldown=60, max_alerts_per_symbol=5)

    with caplog.at_level(logging.WARNING):
        ctrl.update_settings(alert_cooldown=-1, max_alerts_per_symbol=0)

    assert ctrl.alert_cooldown == 60
    assert ctrl.max_alerts_per_symbol == 5
    assert "alert_cooldown" in caplog.text

    ctrl.update_settings(alert_cooldown=30, batch_window_ms=20_000)
    assert ctrl.alert_cooldown == 30
    assert ctrl.max_alerts_per_symbol == 5
    assert ctrl.batcher.batch_window_ms == 20_000


async def test_dispatch_reports_per_sink_results():
    ok_sink = MagicMock()
    ok_sink.name = "ok"
    ok_sink.kind = "notification"
    ok_sink.send_summary = AsyncMock(return_value=True)
    broken_sink = MagicMock()
    broken_sink.name = "broken"
    broken_sink.kind = "webhook"
    broken_sink.send_summary = AsyncMock(side_effect=RuntimeError("unreachable"))

    ctrl = _controller(sinks=[ok_sink, broken_sink])
    alert = _alert()
    assert ctrl.admit(alert)

    summary = ctrl.batcher.generate_summary([alert], T0)
    results = await ctrl.dispatch(summary, [alert])

    assert results == {"ok": True, "broken": False}
    ok_sink.send_summary.assert_called_once_with(summary, [alert])
    # 投递失败不撤销准入
    assert not ctrl.admit(_alert(offset_s=5))
    ctrl.stop()


async def test_flush_dispatches_to_sinks():
    sink = MagicMock()
    sink.name = "sink"
    sink.kind = "notification"
    sink.send_summary = AsyncMock(return_value=True)

    ctrl = _controller(sinks=[sink])
    ctrl.admit(_alert("AAA"))
    ctrl.admit(_alert("BBB"))
    ctrl.batcher.flush()

    # 回调是协程，交给事件循环执行
    for task in list(ctrl.batcher._tasks):
        await task

    sink.send_summary.assert_called_once()
    summary, alerts = sink.send_summary.call_args.args
    assert summary.total_alerts == 2
    assert [a.symbol for a in alerts] == ["AAA", "BBB"]
    ctrl.stop()


def test_clear_resets_state():
    ctrl = _controller()
    ctrl.admit(_alert())
    ctrl.clear()

    assert ctrl.admit(_alert(offset_s=1))
    assert ctrl.suppressed == 0


def test_constructor_rejects_invalid_settings(caplog):
    with caplog.at_level(logging.WARNING):
        ctrl = DeliveryController(
            alert_cooldown=-5,
            max_alerts_per_symbol=0,
            batcher=AlertBatcher(batch_window_ms=1_000),
        )

    assert ctrl.alert_cooldown == 60
    assert ctrl.max_alerts_per_symbol == 5
    assert ctrl.batcher.batch_window_ms == 60_000
    assert "alert_cooldown" in caplog.text
    assert "max_alerts_per_symbol" in caplog.text


def _sink(name: str, kind: str) -> MagicMock:
    sink = MagicMock()
    sink.name = name
    sink.kind = kind
    sink.send_summary = AsyncMock(return_value=True)
    return sink


async def test_dispatch_honours_rule_delivery_flags():
    telegram = _sink("telegram", "notification")
    discord = _sink("discord", "webhook")
    ctrl = _controller(sinks=[telegram, discord])

    quiet = replace(_alert("AAA"), notification_enabled=False)
    no_webhook = replace(_alert("BBB"), webhook_enabled=False)
    default = _alert("CCC")
    alerts = [quiet, no_webhook, default]
    summary = ctrl.batcher.generate_summary(alerts, T0)

    results = await ctrl.dispatch(summary, alerts)

    assert results == {"telegram": True, "discord": True}
    tg_summary, tg_alerts = telegram.send_summary.call_args.args
    assert [a.symbol for a in tg_alerts] == ["BBB", "CCC"]
    assert tg_summary.total_alerts == 2
    _, dc_alerts = discord.send_summary.call_args.args
    assert [a.symbol for a in dc_alerts] == ["AAA", "CCC"]


async def test_global_webhook_switch_with_rule_override():
    discord = _sink("discord", "webhook")
    ctrl = _controller(sinks=[discord], webhook_enabled=False)

    inherit = _alert("AAA")
    forced = replace(_alert("BBB"), webhook_enabled=True)
    summary = ctrl.batcher.generate_summary([inherit, forced], T0)

    await ctrl.dispatch(summary, [inherit, forced])

    _, sent = discord.send_summary.call_args.args
    assert [a.symbol for a in sent] == ["BBB"]


async def test_sink_without_matching_alerts_is_skipped():
    discord = _sink("discord", "webhook")
    ctrl = _controller(sinks=[discord])
    alert = replace(_alert(), webhook_enabled=False)

    results = await ctrl.dispatch(ctrl.batcher.generate_summary([alert], T0), [alert])

    assert results == {}
    discord.send_summary.assert_not_called()
