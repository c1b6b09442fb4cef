"""Upstream endpoints queried on every refresh cycle.

Each upstream is identified by a source_id; field candidate chains in
dossier.live.fields reference payloads by these ids. Payload schemas are
treated as opaque beyond the keys the chains read.
"""

import logging
from typing import Any, List, Optional

from .base_fetcher import UpstreamRequest

logger = logging.getLogger(__name__)

COINGECKO_PRICE = "coingecko_price"
COINGECKO_CHART = "coingecko_chart"
BINANCE_KLINES = "binance_klines"
DOLARAPI_OFICIAL = "dolarapi_oficial"
DOLARAPI_PARALELO = "dolarapi_paralelo"
P2P_BUY = "binance_p2p_buy"
P2P_SELL = "binance_p2p_sell"
AV_GLD = "av_gld"
AV_SLV = "av_slv"
AV_SPY = "av_spy"
AV_WTI = "av_wti"
YAHOO_GLD = "yahoo_gld"
YAHOO_SLV = "yahoo_slv"
YAHOO_SPY = "yahoo_spy"
YAHOO_WTI = "yahoo_wti"

GDELT_QUERIES = {
    "gdelt_venezuela": "venezuela",
    "gdelt_oil": '"oil prices"',
    "gdelt_sanctions": "sanctions",
}

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
BINANCE_P2P_URL = "https://p2p.binance.com/bapi/c2c/v2/friendly/c2c/adv/search"
GDELT_DOC_URL = "https://api.gdeltproject.org/api/v2/doc/doc"

P2P_ASSET = "USDT"
P2P_FIAT = "VES"
P2P_ROWS = 10


def alpha_vantage_notice(payload: Any) -> Optional[str]:
    """Return the throttle/error notice Alpha Vantage embeds in 200 responses."""
    if not isinstance(payload, dict):
        return None
    for key in ("Note", "Information", "Error Message"):
        notice = payload.get(key)
        if notice:
            return str(notice)
    return None


def _alpha_vantage_quote(source_id: str, symbol: str, api_key: str) -> UpstreamRequest:
    return UpstreamRequest(
        source_id=source_id,
        url=ALPHA_VANTAGE_URL,
        params={"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": api_key},
        notice_probe=alpha_vantage_notice,
    )


def _yahoo_chart(source_id: str, symbol: str) -> UpstreamRequest:
    return UpstreamRequest(
        source_id=source_id,
        url=YAHOO_CHART_URL.format(symbol=symbol),
        params={"range": "5d", "interval": "1h"},
    )


def _p2p_side(source_id: str, trade_type: str) -> UpstreamRequest:
    return UpstreamRequest(
        source_id=source_id,
        url=BINANCE_P2P_URL,
        method="POST",
        json_body={
            "asset": P2P_ASSET,
            "fiat": P2P_FIAT,
            "tradeType": trade_type,
            "page": 1,
            "rows": P2P_ROWS,
            "payTypes": [],
            "publisherType": None,
        },
        headers={"Content-Type": "application/json"},
    )


def _gdelt_timeline(source_id: str, query: str) -> UpstreamRequest:
    return UpstreamRequest(
        source_id=source_id,
        url=GDELT_DOC_URL,
        params={"query": query, "mode": "timelinevolraw", "timespan": "7d", "format": "json"},
    )


def build_upstreams(alpha_vantage_key: Optional[str] = None) -> List[UpstreamRequest]:
    """
    Build the list of upstreams for one refresh cycle.

    Alpha Vantage endpoints are only included when a key is configured; the
    affected fields then resolve from their chart candidates instead.
    """
    upstreams = [
        UpstreamRequest(
            source_id=COINGECKO_PRICE,
            url="https://api.coingecko.com/api/v3/simple/price",
            params={"ids": "bitcoin", "vs_currencies": "usd", "include_last_updated_at": "true"},
        ),
        UpstreamRequest(
            source_id=COINGECKO_CHART,
            url="https://api.coingecko.com/api/v3/coins/bitcoin/market_chart",
            params={"vs_currency": "usd", "days": "2"},
        ),
        UpstreamRequest(
            source_id=BINANCE_KLINES,
            url="https://api.binance.com/api/v3/klines",
            params={"symbol": "BTCUSDT", "interval": "1h", "limit": 48},
        ),
        UpstreamRequest(source_id=DOLARAPI_OFICIAL, url="https://ve.dolarapi.com/v1/dolares/oficial"),
        UpstreamRequest(source_id=DOLARAPI_PARALELO, url="https://ve.dolarapi.com/v1/dolares/paralelo"),
        _p2p_side(P2P_BUY, "BUY"),
        _p2p_side(P2P_SELL, "SELL"),
        _yahoo_chart(YAHOO_GLD, "GLD"),
        _yahoo_chart(YAHOO_SLV, "SLV"),
        _yahoo_chart(YAHOO_SPY, "SPY"),
        _yahoo_chart(YAHOO_WTI, "CL=F"),
    ]

    upstreams.extend(_gdelt_timeline(sid, query) for sid, query in GDELT_QUERIES.items())

    if alpha_vantage_key:
        upstreams.extend([
            _alpha_vantage_quote(AV_GLD, "GLD", alpha_vantage_key),
            _alpha_vantage_quote(AV_SLV, "SLV", alpha_vantage_key),
            _alpha_vantage_quote(AV_SPY, "SPY", alpha_vantage_key),
            UpstreamRequest(
                source_id=AV_WTI,
                url=ALPHA_VANTAGE_URL,
                params={"function": "WTI", "interval": "daily", "apikey": alpha_vantage_key},
                notice_probe=alpha_vantage_notice,
            ),
        ])
    else:
        logger.info("ALPHA_VANTAGE_KEY not configured, skipping Alpha Vantage quotes")

    return upstreams
