"""
Field catalog: what is tracked and where each value comes from.

Every field declares its own candidate chains. Chain order is the only
trust ordering; the previous cycle's value is appended implicitly by the
resolver, so it never appears here.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from ..ingest import sources as src
from .coercion import coerce
from .resolver import Candidate, CandidateChain, chain, dig, resolve_two_sided
from .staleness import (
    CRYPTO_STALE_MINUTES,
    MARKET_STALE_MINUTES,
    OFFICIAL_RATE_STALE_MINUTES,
    P2P_RATE_STALE_MINUTES,
)


@dataclass(frozen=True)
class FieldSpec:
    key: str
    label: str
    unit: str
    value_chain: CandidateChain
    series_chain: CandidateChain = field(default_factory=CandidateChain)
    stale_after_minutes: float = MARKET_STALE_MINUTES
    steps_per_lookback: int = 24  # series positions spanning the change lookback


@dataclass(frozen=True)
class IndexSpec:
    key: str
    label: str
    members: Tuple[Candidate, ...]
    steps_per_lookback: int = 24

    @property
    def history_key(self) -> str:
        return f"index:{self.key}"


# ---- payload readers ----

def _secs_to_ms(value: Any) -> Optional[int]:
    secs = coerce(value)
    return int(secs * 1000) if secs is not None else None


def _iso_to_ms(value: Any) -> Optional[int]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _last_finite(values: Optional[List[Any]]) -> Optional[float]:
    for v in reversed(values or []):
        number = coerce(v)
        if number is not None:
            return number
    return None


def coingecko_chart_prices(payload: Any) -> List[Any]:
    return [dig(point, 1) for point in dig(payload, "prices") or []]


def binance_kline_closes(payload: Any) -> List[Any]:
    if not isinstance(payload, list):
        return []
    return [dig(kline, 4) for kline in payload]


def yahoo_closes(payload: Any) -> List[Any]:
    return dig(payload, "chart", "result", 0, "indicators", "quote", 0, "close") or []


def yahoo_market_time(payload: Any) -> Optional[int]:
    return _secs_to_ms(dig(payload, "chart", "result", 0, "meta", "regularMarketTime"))


def alpha_vantage_quote_price(payload: Any) -> Any:
    return dig(payload, "Global Quote", "05. price")


def alpha_vantage_wti_values(payload: Any) -> List[Any]:
    # Newest first upstream; charts want oldest first
    return [dig(row, "value") for row in reversed(dig(payload, "data") or [])]


def p2p_offer_prices(payload: Any) -> List[Any]:
    return [dig(item, "adv", "price") for item in dig(payload, "data") or []]


def p2p_midpoint(buy_payload: Any, sell_payload: Any) -> Optional[float]:
    return resolve_two_sided(p2p_offer_prices(buy_payload), p2p_offer_prices(sell_payload)).value


def gdelt_volumes(payload: Any) -> List[Any]:
    return [dig(point, "value") for point in dig(payload, "timeline", 0, "data") or []]


# ---- shared candidates ----

def _yahoo_last(source_id: str, symbol: str) -> Candidate:
    return Candidate(
        name=source_id,
        sources=(source_id,),
        extract=lambda p: _last_finite(yahoo_closes(p)),
        observed_at=yahoo_market_time,
        label=f"Yahoo chart ({symbol})",
    )


def _yahoo_series(source_id: str, symbol: str) -> Candidate:
    return Candidate(name=source_id, sources=(source_id,), extract=yahoo_closes, label=f"Yahoo chart ({symbol})")


def _av_quote(source_id: str, symbol: str) -> Candidate:
    return Candidate(
        name=source_id,
        sources=(source_id,),
        extract=alpha_vantage_quote_price,
        label=f"Alpha Vantage quote ({symbol})",
    )


def _dolarapi(source_id: str, label: str) -> Candidate:
    return Candidate(
        name=source_id,
        sources=(source_id,),
        extract=lambda p: dig(p, "promedio"),
        observed_at=lambda p: _iso_to_ms(dig(p, "fechaActualizacion")),
        label=label,
    )


def build_fields() -> List[FieldSpec]:
    """The tracked fields, in display order."""
    cg_chart = Candidate(
        name=src.COINGECKO_CHART,
        sources=(src.COINGECKO_CHART,),
        extract=coingecko_chart_prices,
        label="CoinGecko chart",
    )
    klines = Candidate(
        name=src.BINANCE_KLINES,
        sources=(src.BINANCE_KLINES,),
        extract=binance_kline_closes,
        label="Binance klines",
    )

    return [
        FieldSpec(
            key="btc",
            label="BTC (USD)",
            unit="USD",
            value_chain=chain(
                Candidate(
                    name=src.COINGECKO_PRICE,
                    sources=(src.COINGECKO_PRICE,),
                    extract=lambda p: dig(p, "bitcoin", "usd"),
                    observed_at=lambda p: _secs_to_ms(dig(p, "bitcoin", "last_updated_at")),
                    label="CoinGecko spot",
                ),
                Candidate(
                    name="coingecko_chart_last",
                    sources=(src.COINGECKO_CHART,),
                    extract=lambda p: _last_finite(coingecko_chart_prices(p)),
                    label="CoinGecko chart",
                ),
                Candidate(
                    name="binance_klines_last",
                    sources=(src.BINANCE_KLINES,),
                    extract=lambda p: _last_finite(binance_kline_closes(p)),
                    label="Binance klines",
                ),
            ),
            series_chain=chain(cg_chart, klines),
            stale_after_minutes=CRYPTO_STALE_MINUTES,
            steps_per_lookback=24,
        ),
        FieldSpec(
            key="gold",
            label="Gold (GLD proxy)",
            unit="USD",
            value_chain=chain(_av_quote(src.AV_GLD, "GLD"), _yahoo_last(src.YAHOO_GLD, "GLD")),
            series_chain=chain(_yahoo_series(src.YAHOO_GLD, "GLD")),
            steps_per_lookback=7,
        ),
        FieldSpec(
            key="silver",
            label="Silver (SLV proxy)",
            unit="USD",
            value_chain=chain(_av_quote(src.AV_SLV, "SLV"), _yahoo_last(src.YAHOO_SLV, "SLV")),
            series_chain=chain(_yahoo_series(src.YAHOO_SLV, "SLV")),
            steps_per_lookback=7,
        ),
        FieldSpec(
            key="spx",
            label="S&P 500 (SPY proxy)",
            unit="USD",
            value_chain=chain(_av_quote(src.AV_SPY, "SPY"), _yahoo_last(src.YAHOO_SPY, "SPY")),
            series_chain=chain(_yahoo_series(src.YAHOO_SPY, "SPY")),
            steps_per_lookback=7,
        ),
        FieldSpec(
            key="wti",
            label="WTI crude",
            unit="USD",
            value_chain=chain(
                Candidate(
                    name=src.AV_WTI,
                    sources=(src.AV_WTI,),
                    extract=lambda p: dig(p, "data", 0, "value"),
                    label="Alpha Vantage WTI daily",
                ),
                _yahoo_last(src.YAHOO_WTI, "CL=F"),
            ),
            series_chain=chain(
                _yahoo_series(src.YAHOO_WTI, "CL=F"),
                Candidate(
                    name=src.AV_WTI,
                    sources=(src.AV_WTI,),
                    extract=alpha_vantage_wti_values,
                    label="Alpha Vantage WTI daily",
                ),
            ),
            steps_per_lookback=23,
        ),
        FieldSpec(
            key="usd_official",
            label="Official USD/VES",
            unit="VES",
            value_chain=chain(_dolarapi(src.DOLARAPI_OFICIAL, "DolarApi oficial")),
            stale_after_minutes=OFFICIAL_RATE_STALE_MINUTES,
        ),
        FieldSpec(
            key="usd_parallel",
            label="Parallel USD/VES",
            unit="VES",
            value_chain=chain(
                Candidate(
                    name="p2p_depth",
                    sources=(src.P2P_BUY, src.P2P_SELL),
                    extract=p2p_midpoint,
                    label="Binance P2P depth (top 8 per side)",
                ),
                _dolarapi(src.DOLARAPI_PARALELO, "DolarApi paralelo"),
            ),
            stale_after_minutes=P2P_RATE_STALE_MINUTES,
        ),
    ]


def build_indexes() -> List[IndexSpec]:
    """Composite indexes: one sub-series per contributing entity."""
    return [
        IndexSpec(
            key="attention",
            label="News attention",
            members=tuple(
                Candidate(name=query, sources=(source_id,), extract=gdelt_volumes, label=f"GDELT {query}")
                for source_id, query in src.GDELT_QUERIES.items()
            ),
            steps_per_lookback=24,
        ),
    ]
