# tests/collector/test_ticker_poller.py
import time
from unittest.mock import AsyncMock, MagicMock

from screener.collector.ticker_poller import TickerPoller, ticker_to_snapshot

NOW = 1_700_000_000_000


def _ticker(symbol: str, last: float | None = 100.0) -> dict:
    return {
        "symbol": symbol,
        "timestamp": NOW,
        "last": last,
        "open": 95.0,
        "high": 105.0,
        "low": 90.0,
        "previousClose": 94.5,
        "vwap": 98.0,
        "percentage": 5.26,
        "baseVolume": 1000.0,
        "quoteVolume": 98000.0,
        "bid": 99.9,
        "bidVolume": 3.0,
        "ask": 100.1,
        "askVolume": 4.0,
        "info": {"count": "1234"},
    }


def test_ticker_to_snapshot():
    snap = ticker_to_snapshot(_ticker("AAA/USDT"))

    assert snap is not None
    assert snap.symbol == "AAA/USDT"
    assert snap.last_price == 100.0
    assert snap.timestamp == NOW
    assert snap.prev_close_price == 94.5
    assert snap.weighted_avg_price == 98.0
    assert snap.quote_volume == 98000.0
    assert snap.ask_qty == 4.0
    assert snap.count == 1234


def test_ticker_without_price_is_skipped():
    assert ticker_to_snapshot(_ticker("AAA/USDT", last=None)) is None


def test_missing_fields_default_to_zero():
    snap = ticker_to_snapshot({"symbol": "AAA/USDT", "close": 5, "timestamp": NOW})

    assert snap is not None
    assert snap.last_price == 5.0
    assert snap.bid_price == 0.0
    assert snap.count == 0


async def test_poll_filters_by_quote_asset():
    poller = TickerPoller("binance", symbols=[])
    poller.exchange = MagicMock()
    poller.exchange.fetch_tickers = AsyncMock(
        return_value={
            "AAA/USDT": _ticker("AAA/USDT"),
            "BBB/BTC": _ticker("BBB/BTC"),
            "CCC/USDT": _ticker("CCC/USDT", last=None),
        }
    )

    snapshots = await poller.poll_once()

    assert [s.symbol for s in snapshots] == ["AAA/USDT"]
    poller.exchange.fetch_tickers.assert_called_once_with(None)


async def test_poll_with_configured_symbols():
    poller = TickerPoller("binance", symbols=["BBB/BTC"])
    poller.exchange = MagicMock()
    poller.exchange.fetch_tickers = AsyncMock(
        return_value={"AAA/USDT": _ticker("AAA/USDT"), "BBB/BTC": _ticker("BBB/BTC")}
    )

    snapshots = await poller.poll_once()

    assert [s.symbol for s in snapshots] == ["BBB/BTC"]
    poller.exchange.fetch_tickers.assert_called_once_with(["BBB/BTC"])


async def test_new_symbol_callback_fires_once():
    seen = []
    poller = TickerPoller("binance", symbols=[], on_new_symbol=lambda s, ts: seen.append((s, ts)))
    poller.exchange = MagicMock()
    poller.exchange.fetch_tickers = AsyncMock(return_value={"AAA/USDT": _ticker("AAA/USDT")})

    await poller.poll_once()
    await poller.poll_once()

    assert [s for s, _ in seen] == ["AAA/USDT"]


async def test_new_symbol_uses_local_receive_time():
    seen = []
    poller = TickerPoller("binance", symbols=[], on_new_symbol=lambda s, ts: seen.append(ts))
    poller.exchange = MagicMock()
    # 冷门交易对的 ticker 时间戳可能停留在很久以前
    stale = _ticker("AAA/USDT")
    stale["timestamp"] = NOW - 7 * 24 * 60 * 60 * 1000
    poller.exchange.fetch_tickers = AsyncMock(return_value={"AAA/USDT": stale})

    before = int(time.time() * 1000)
    await poller.poll_once()
    after = int(time.time() * 1000)

    assert before <= seen[0] <= after


async def test_fetch_error_returns_empty():
    poller = TickerPoller("binance", symbols=[])
    poller.exchange = MagicMock()
    poller.exchange.fetch_tickers = AsyncMock(side_effect=Exception("rate limited"))

    assert await poller.poll_once() == []


async def test_poll_without_connection_returns_empty():
    poller = TickerPoller("binance", symbols=[])
    assert await poller.poll_once() == []
