from screener.market.models import FibonacciLevels, SymbolSnapshot, TechnicalIndicators

DOMINANCE_REFERENCES = ("ETH", "BTC", "PAXG")


def _round3(value: float) -> float:
    return round(value * 1000) / 1000


def _safe_divide(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 1.0
    return numerator / denominator


def calculate_vcp(
    last_price: float,
    weighted_avg_price: float,
    high_price: float,
    low_price: float,
) -> float:
    """
    VCP = (P/WA) * [((close-low)-(high-close))/(high-low)]

    high == low 时返回 0
    """
    if high_price == low_price:
        return 0.0

    price_to_wa = _safe_divide(last_price, weighted_avg_price)
    numerator = (last_price - low_price) - (high_price - last_price)
    return _round3(price_to_wa * numerator / (high_price - low_price))


def calculate_fibonacci(high_price: float, low_price: float, last_price: float) -> FibonacciLevels:
    pivot = (high_price + low_price + last_price) / 3
    span = high_price - low_price
    return FibonacciLevels(
        pivot=_round3(pivot),
        resistance1=_round3(pivot + 1.0 * span),
        resistance0618=_round3(pivot + 0.618 * span),
        resistance0382=_round3(pivot + 0.382 * span),
        support0382=_round3(pivot - 0.382 * span),
        support0618=_round3(pivot - 0.618 * span),
        support1=_round3(pivot - 1.0 * span),
    )


def calculate_dominance(snapshot: SymbolSnapshot, reference: SymbolSnapshot | None) -> float:
    """相对参考币种 (ETH/BTC/PAXG) 的涨跌幅强弱"""
    if reference is None or reference.price_change_percent == 0:
        return 0.0

    change = snapshot.price_change_percent
    ref_change = reference.price_change_percent
    dominance = change / ref_change

    # 只要有一方下跌就取反
    if change < 0 or ref_change < 0:
        dominance = -dominance
    return dominance


def compute_indicators(
    snapshot: SymbolSnapshot,
    eth: SymbolSnapshot | None = None,
    btc: SymbolSnapshot | None = None,
    paxg: SymbolSnapshot | None = None,
) -> TechnicalIndicators:
    s = snapshot
    fib = calculate_fibonacci(s.high_price, s.low_price, s.last_price)

    if s.weighted_avg_price > 0:
        change_from_wa = s.last_price / s.weighted_avg_price * 100 - 100
    else:
        change_from_wa = 0.0
    if s.prev_close_price > 0:
        change_from_prev = s.last_price / s.prev_close_price * 100 - 100
    else:
        change_from_prev = 0.0

    return TechnicalIndicators(
        vcp=calculate_vcp(s.last_price, s.weighted_avg_price, s.high_price, s.low_price),
        price_to_weighted_avg=_round3(_safe_divide(s.last_price, s.weighted_avg_price)),
        price_to_high=_round3(_safe_divide(s.last_price, s.high_price)),
        low_to_price=_round3(_safe_divide(s.low_price, s.last_price)),
        high_to_low=_round3(_safe_divide(s.high_price, s.low_price)),
        ask_to_volume=_round3(_safe_divide(s.ask_qty, s.volume)),
        price_to_volume=_round3(_safe_divide(s.last_price, s.volume)),
        quote_to_count=_round3(_safe_divide(s.quote_volume, s.count)),
        trades_per_volume=_round3(_safe_divide(s.count, s.volume)),
        fibonacci=fib,
        pivot_to_weighted_avg=_round3(_safe_divide(fib.pivot, s.weighted_avg_price)),
        pivot_to_price=_round3(_safe_divide(fib.pivot, s.last_price)),
        price_change_from_weighted_avg=_round3(change_from_wa),
        price_change_from_prev_close=_round3(change_from_prev),
        eth_dominance=_round3(calculate_dominance(s, eth)),
        btc_dominance=_round3(calculate_dominance(s, btc)),
        paxg_dominance=_round3(calculate_dominance(s, paxg)),
    )


def _base_asset(symbol: str, quote_asset: str) -> str:
    base = symbol.split("/")[0]
    if base.endswith(quote_asset) and base != quote_asset:
        base = base[: -len(quote_asset)]
    return base


def apply_indicators(
    snapshots: list[SymbolSnapshot], quote_asset: str = "USDT"
) -> list[SymbolSnapshot]:
    """为一批快照计算指标 (原地写入 indicators)"""
    refs: dict[str, SymbolSnapshot] = {}
    for s in snapshots:
        base = _base_asset(s.symbol, quote_asset)
        if base in DOMINANCE_REFERENCES:
            refs[base] = s

    for s in snapshots:
        s.indicators = compute_indicators(s, refs.get("ETH"), refs.get("BTC"), refs.get("PAXG"))
    return snapshots


def calculate_market_dominance(
    snapshots: list[SymbolSnapshot], quote_asset: str = "USDT"
) -> dict[str, float]:
    """BTC / ETH / PAXG 成交额占比 (%)"""
    result = {"btc_dominance": 0.0, "eth_dominance": 0.0, "paxg_dominance": 0.0}
    total = sum(s.quote_volume for s in snapshots)
    if not snapshots or total == 0:
        return result

    for s in snapshots:
        key = f"{_base_asset(s.symbol, quote_asset).lower()}_dominance"
        if key in result:
            result[key] = s.quote_volume / total * 100
    return result
