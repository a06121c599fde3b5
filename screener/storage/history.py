import csv
import io
import json
import logging
import time
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from screener.alert.models import Alert
from screener.storage.database import KeyValueStore

logger = logging.getLogger(__name__)

ALERT_HISTORY_KEY = "alert_history"
MAX_HISTORY_ITEMS = 1000

DAY_MS = 24 * 60 * 60 * 1000

CSV_HEADERS = [
    "Timestamp",
    "Symbol",
    "Type",
    "Severity",
    "Title",
    "Message",
    "Value",
    "Threshold",
    "Timeframe",
    "Read",
    "Dismissed",
    "Acknowledged At",
    "Acknowledged By",
]


@dataclass
class AlertHistoryItem:
    id: str
    symbol: str
    type: str
    severity: str
    title: str
    message: str
    value: float
    threshold: float
    timestamp: int
    timeframe: str | None = None
    read: bool = False
    dismissed: bool = False
    acknowledged_at: int | None = None
    acknowledged_by: str | None = None

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertHistoryItem":
        return cls(
            id=alert.id,
            symbol=alert.symbol,
            type=alert.type.value,
            severity=alert.severity.value,
            title=alert.title,
            message=alert.message,
            value=alert.value,
            threshold=alert.threshold,
            timestamp=alert.timestamp,
            timeframe=alert.timeframe,
            read=alert.read,
            dismissed=alert.dismissed,
        )


@dataclass
class AlertHistoryStats:
    total: int
    last_24h: int
    last_week: int
    by_type: dict[str, int]
    by_severity: dict[str, int]
    most_active_symbol: str


def _iso(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, UTC).isoformat()


def _now_ms() -> int:
    return int(time.time() * 1000)


class AlertHistory:
    """告警历史 (新的在前，最多 max_items 条)，整体以 JSON 存在一个键下"""

    def __init__(self, store: KeyValueStore, max_items: int = MAX_HISTORY_ITEMS):
        self.store = store
        self.max_items = max_items

    async def _save(self, items: list[AlertHistoryItem]) -> None:
        await self.store.set_item(ALERT_HISTORY_KEY, json.dumps([asdict(i) for i in items]))

    async def get(self) -> list[AlertHistoryItem]:
        data = await self.store.get_item(ALERT_HISTORY_KEY)
        if not data:
            return []
        try:
            return [AlertHistoryItem(**item) for item in json.loads(data)]
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Corrupt alert history, ignoring: {e}")
            return []

    async def add(self, alert: Alert) -> None:
        items = await self.get()
        items.insert(0, AlertHistoryItem.from_alert(alert))
        del items[self.max_items :]
        await self._save(items)

    async def by_symbol(self, symbol: str) -> list[AlertHistoryItem]:
        return [i for i in await self.get() if i.symbol == symbol]

    async def by_type(self, alert_type: str) -> list[AlertHistoryItem]:
        return [i for i in await self.get() if i.type == alert_type]

    async def by_time_range(self, start: int, end: int) -> list[AlertHistoryItem]:
        return [i for i in await self.get() if start <= i.timestamp <= end]

    async def acknowledge(self, alert_id: str, user_id: str | None = None) -> bool:
        items = await self.get()
        for item in items:
            if item.id == alert_id:
                item.acknowledged_at = _now_ms()
                item.acknowledged_by = user_id
                await self._save(items)
                return True
        return False

    async def clear(self) -> None:
        await self.store.remove_item(ALERT_HISTORY_KEY)

    async def clear_old(self, days: int, now: int | None = None) -> int:
        now = now if now is not None else _now_ms()
        cutoff = now - days * DAY_MS
        items = await self.get()
        kept = [i for i in items if i.timestamp >= cutoff]
        await self._save(kept)
        return len(items) - len(kept)

    async def export_json(self) -> str:
        return json.dumps([asdict(i) for i in await self.get()], indent=2, ensure_ascii=False)

    async def export_csv(self) -> str:
        items = await self.get()
        if not items:
            return ""

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for i in items:
            writer.writerow(
                [
                    _iso(i.timestamp),
                    i.symbol,
                    i.type,
                    i.severity,
                    i.title,
                    i.message,
                    i.value,
                    i.threshold,
                    i.timeframe or "",
                    str(i.read).lower(),
                    str(i.dismissed).lower(),
                    _iso(i.acknowledged_at) if i.acknowledged_at else "",
                    i.acknowledged_by or "",
                ]
            )
        return buf.getvalue().rstrip("\n")

    async def stats(self, now: int | None = None) -> AlertHistoryStats:
        now = now if now is not None else _now_ms()
        items = await self.get()
        symbols = Counter(i.symbol for i in items)
        most_active = symbols.most_common(1)[0][0] if symbols else ""

        return AlertHistoryStats(
            total=len(items),
            last_24h=sum(1 for i in items if i.timestamp >= now - DAY_MS),
            last_week=sum(1 for i in items if i.timestamp >= now - 7 * DAY_MS),
            by_type=dict(Counter(i.type for i in items)),
            by_severity=dict(Counter(i.severity for i in items)),
            most_active_symbol=most_active,
        )