import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

import ccxt.async_support as ccxt

from screener.collector.base import BaseCollector
from screener.market.models import SymbolSnapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[SymbolSnapshot]], Coroutine[Any, Any, None]]


def _f(value: Any) -> float:
    return float(value) if value is not None else 0.0


def ticker_to_snapshot(ticker: dict[str, Any]) -> SymbolSnapshot | None:
    """ccxt 统一 ticker -> SymbolSnapshot；缺少价格时返回 None"""
    last = ticker.get("last") or ticker.get("close")
    if last is None:
        return None

    info = ticker.get("info") or {}
    timestamp = ticker.get("timestamp") or int(time.time() * 1000)

    return SymbolSnapshot(
        symbol=ticker["symbol"],
        last_price=_f(last),
        timestamp=int(timestamp),
        open_price=_f(ticker.get("open")),
        high_price=_f(ticker.get("high")),
        low_price=_f(ticker.get("low")),
        prev_close_price=_f(ticker.get("previousClose") or info.get("prevClosePrice")),
        weighted_avg_price=_f(ticker.get("vwap")),
        price_change_percent=_f(ticker.get("percentage")),
        volume=_f(ticker.get("baseVolume")),
        quote_volume=_f(ticker.get("quoteVolume")),
        bid_price=_f(ticker.get("bid")),
        bid_qty=_f(ticker.get("bidVolume")),
        ask_price=_f(ticker.get("ask")),
        ask_qty=_f(ticker.get("askVolume")),
        count=int(info.get("count") or 0),
    )


class TickerPoller(BaseCollector):
    """定时拉取 24h ticker，每轮回调一批快照"""

    def __init__(
        self,
        exchange_id: str,
        symbols: list[str],
        quote_asset: str = "USDT",
        interval_seconds: int = 5,
        on_snapshots: SnapshotCallback | None = None,
        on_new_symbol: Callable[[str, int], None] | None = None,
    ):
        super().__init__(exchange_id)
        self.exchange_id = exchange_id
        self.symbols = symbols
        self.quote_asset = quote_asset
        self.interval_seconds = interval_seconds
        self.on_snapshots = on_snapshots
        self.on_new_symbol = on_new_symbol
        self.exchange: Any = None
        self._seen: set[str] = set()

    async def connect(self) -> None:
        exchange_class = getattr(ccxt, self.exchange_id)
        self.exchange = exchange_class({"enableRateLimit": True})

    async def disconnect(self) -> None:
        if self.exchange:
            await self.exchange.close()
            self.exchange = None

    def _accept(self, symbol: str) -> bool:
        if self.symbols:
            return symbol in self.symbols
        # 未配置时取全部以 quote_asset 计价的交易对
        return symbol.split(":")[0].endswith(f"/{self.quote_asset}")

    async def poll_once(self) -> list[SymbolSnapshot]:
        if not self.exchange:
            return []

        try:
            tickers: dict[str, Any] = await self.exchange.fetch_tickers(self.symbols or None)
        except Exception as e:
            logger.error(f"Failed to fetch tickers from {self.exchange_id}: {e}")
            return []

        snapshots: list[SymbolSnapshot] = []
        for symbol, ticker in tickers.items():
            if not self._accept(symbol):
                continue
            snapshot = ticker_to_snapshot(ticker)
            if snapshot is None:
                continue
            if symbol not in self._seen:
                self._seen.add(symbol)
                if self.on_new_symbol:
                    # 预热从本地开始接收的时刻算起，交易所时间戳可能是旧的
                    self.on_new_symbol(symbol, int(time.time() * 1000))
            snapshots.append(snapshot)

        return snapshots

    async def _run(self) -> None:
        while self.running:
            try:
                snapshots = await self.poll_once()
                if snapshots and self.on_snapshots:
                    await self.on_snapshots(snapshots)
            except Exception as e:
                logger.error(f"Ticker poll error: {e}")
            await asyncio.sleep(self.interval_seconds)
