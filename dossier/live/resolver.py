"""
Ordered candidate chains for value and series resolution.

A CandidateChain is an explicit, per-field list of named providers. Each
provider either carries a direct value or reads one or more upstream
payloads from the current fetch batch. Evaluation is in chain order and
stops at the first candidate that yields a finite number (or, for series,
a non-empty compacted series). Nothing is trusted beyond chain order.
When every candidate fails the previous cycle's value is retained.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from .coercion import coerce
from .series import compact, mean

logger = logging.getLogger(__name__)

TOP_N_OFFERS = 8
PREVIOUS = "previous"

# Errors an extractor may raise on an unexpected payload shape
_EXTRACT_ERRORS = (KeyError, IndexError, TypeError, ValueError, AttributeError)


def dig(payload: Any, *path: Any) -> Any:
    """Walk nested dicts/lists; None as soon as a step is missing."""
    current = payload
    for step in path:
        if isinstance(current, dict):
            current = current.get(step)
        elif isinstance(current, (list, tuple)) and isinstance(step, int):
            if -len(current) <= step < len(current):
                current = current[step]
            else:
                return None
        else:
            return None
        if current is None:
            return None
    return current


@dataclass(frozen=True)
class Candidate:
    """One named provider in a chain.

    With no ``sources`` the candidate is a direct value. Otherwise ``extract``
    receives the payloads of ``sources`` in order; the candidate is skipped
    when any of them is missing from the batch. ``observed_at`` optionally
    reads an upstream timestamp (ms) from the same payloads.
    """
    name: str
    sources: Tuple[str, ...] = ()
    extract: Optional[Callable[..., Any]] = None
    value: Any = None
    observed_at: Optional[Callable[..., Optional[int]]] = None
    label: str = ""

    @classmethod
    def direct(cls, name: str, value: Any, label: str = "") -> "Candidate":
        return cls(name=name, value=value, label=label)

    @property
    def provenance(self) -> str:
        return self.label or self.name

    def _payloads(self, batch: Mapping[str, Any]) -> Optional[List[Any]]:
        payloads = [batch.get(source) for source in self.sources]
        if any(p is None for p in payloads):
            return None
        return payloads

    def raw(self, batch: Mapping[str, Any]) -> Any:
        if not self.sources:
            return self.value
        payloads = self._payloads(batch)
        if payloads is None or self.extract is None:
            return None
        try:
            return self.extract(*payloads)
        except _EXTRACT_ERRORS as e:
            logger.debug(f"Candidate {self.name} could not read payload: {e}")
            return None

    def timestamp(self, batch: Mapping[str, Any]) -> Optional[int]:
        if self.observed_at is None or not self.sources:
            return None
        payloads = self._payloads(batch)
        if payloads is None:
            return None
        try:
            ts = coerce(self.observed_at(*payloads))
        except _EXTRACT_ERRORS:
            return None
        return int(ts) if ts is not None else None


@dataclass(frozen=True)
class Resolution:
    value: Optional[float]
    source: Optional[str]          # provenance of the winning candidate
    observed_at: Optional[int]     # upstream timestamp, if the candidate has one
    live: bool                     # False when the value was carried forward


@dataclass(frozen=True)
class CandidateChain:
    candidates: Tuple[Candidate, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.candidates]

    def resolve(self, batch: Mapping[str, Any], previous: Optional[float] = None) -> Resolution:
        """First finite candidate wins; otherwise carry ``previous`` forward."""
        for candidate in self.candidates:
            value = coerce(candidate.raw(batch))
            if value is not None:
                return Resolution(
                    value=value,
                    source=candidate.provenance,
                    observed_at=candidate.timestamp(batch),
                    live=True,
                )
        previous = coerce(previous)
        return Resolution(
            value=previous,
            source=PREVIOUS if previous is not None else None,
            observed_at=None,
            live=False,
        )

    def resolve_series(self, batch: Mapping[str, Any], max_len: int) -> Tuple[List[float], Optional[str]]:
        """First candidate whose compacted series is non-empty wins."""
        for candidate in self.candidates:
            raw = candidate.raw(batch)
            if raw is None or isinstance(raw, (str, bytes)):
                continue
            try:
                series = compact(raw, max_len)
            except TypeError:
                continue
            if series:
                return series, candidate.provenance
        return [], None


def chain(*candidates: Candidate) -> CandidateChain:
    return CandidateChain(candidates=tuple(candidates))


# ---- Two-sided market depth ----

@dataclass(frozen=True)
class DepthQuote:
    value: Optional[float]
    avg_buy: Optional[float]
    avg_sell: Optional[float]
    path: Optional[str]  # "depth", "fallback" or None


def average_top_offers(prices: Optional[Iterable[Any]], n: int = TOP_N_OFFERS) -> Optional[float]:
    """Mean of the first ``n`` valid (finite, positive) offer prices."""
    if prices is None:
        return None
    valid = [p for p in (coerce(x) for x in prices) if p is not None and p > 0]
    return mean(valid[:n])


def resolve_two_sided(
    buy_prices: Optional[Sequence[Any]],
    sell_prices: Optional[Sequence[Any]],
    fallback: Any = None,
    n: int = TOP_N_OFFERS,
) -> DepthQuote:
    """
    Midpoint of the top-N average on each side, or a single-sided fallback.

    Both sides must produce an average for the depth path; otherwise the
    fallback value is used directly when it is finite.
    """
    avg_buy = average_top_offers(buy_prices, n)
    avg_sell = average_top_offers(sell_prices, n)
    if avg_buy is not None and avg_sell is not None:
        return DepthQuote(value=(avg_buy + avg_sell) / 2, avg_buy=avg_buy, avg_sell=avg_sell, path="depth")

    fallback_value = coerce(fallback)
    if fallback_value is not None:
        return DepthQuote(value=fallback_value, avg_buy=avg_buy, avg_sell=avg_sell, path="fallback")

    return DepthQuote(value=None, avg_buy=avg_buy, avg_sell=avg_sell, path=None)
