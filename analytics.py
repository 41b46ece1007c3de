"""
Real-time digit and movement analytics engine.

Responsibilities:
- Slice the configured trailing window out of the tick buffer
- Compute digit distribution, over/under, match/differ, even/odd and
  rise/fall probabilities over that window
- Encode tick transitions into display symbols per contract type
- Publish immutable analysis snapshots to subscribers on every change

This module must never:
- Connect to WebSockets
- Talk to Streamlit
- Sleep, block or spawn threads
"""

import logging
from dataclasses import asdict
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from alerts import AlertThresholds, detect_alerts
from utils import (
    AnalysisSnapshot,
    ConfigurationError,
    ContractType,
    DigitCount,
    InvalidTickError,
    MarketSetup,
    ProbabilitySet,
    Tick,
    TickBuffer,
)


logger = logging.getLogger("analytics")

SnapshotCallback = Callable[[AnalysisSnapshot], None]

# Symbol alphabets per market
SEQUENCE_SYMBOLS = {
    "digits": ("E", "O"),
    ContractType.EVEN_ODD.value: ("E", "O"),
    ContractType.RISE_FALL.value: ("R", "F"),
    ContractType.OVER_UNDER.value: ("O", "U"),
    ContractType.MATCHES_DIFFERS.value: ("M", "D"),
}

HOT_COLD_COUNT = 3


# ============================================================
# PURE HELPER FUNCTIONS (no I/O, no side effects)
# ============================================================

def last_digit(quote: float) -> int:
    """floor((quote * 100) mod 10), with the dividend's sign like C fmod."""
    return int(np.floor(np.fmod(quote * 100.0, 10.0)))


def extract_window(ticks: Sequence[Tick], window_size: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Take the last min(window_size, len(ticks)) ticks.

    Returns (quotes, digits) in chronological order. Both are empty when
    there are no ticks; callers treat that as "no analysis available".
    """
    if isinstance(window_size, bool) or not isinstance(window_size, (int, np.integer)):
        raise ConfigurationError(f"window_size must be an integer, got {window_size!r}")
    if window_size < 1:
        raise ConfigurationError(f"window_size must be >= 1, got {window_size}")

    window = list(ticks)[-window_size:]
    quotes = np.array([t.quote for t in window], dtype=np.float64)
    digits = np.floor(np.fmod(quotes * 100.0, 10.0)).astype(np.int64)
    return quotes, digits


def digit_frequency(digits: np.ndarray) -> Tuple[DigitCount, ...]:
    total = len(digits)
    counts = np.bincount(digits, minlength=10) if total else np.zeros(10, dtype=np.int64)
    return tuple(
        DigitCount(
            digit=d,
            count=int(counts[d]),
            percentage=float(counts[d]) / total * 100.0 if total else 0.0,
        )
        for d in range(10)
    )


def _ratio(numerator: np.ndarray, denominator) -> np.ndarray:
    """Elementwise ratio that reports 0 where the denominator is 0."""
    numerator = np.asarray(numerator, dtype=np.float64)
    denominator = np.broadcast_to(np.asarray(denominator, dtype=np.float64), numerator.shape)
    out = np.zeros_like(numerator)
    np.divide(numerator, denominator, out=out, where=denominator > 0)
    return out


def compute_probabilities(digits: np.ndarray, quotes: np.ndarray) -> ProbabilitySet:
    """
    Probability ratios (0-1) over the window.

    Matches/differs use a single pass over consecutive pairs; the
    opportunity count for digit d is the number of times d occurs with a
    successor. Rise and fall exclude ties, so rise + fall may be below 1.
    """
    total = len(digits)
    if total == 0:
        return ProbabilitySet.empty()

    counts = np.bincount(digits, minlength=10)
    # counts strictly below / above each digit value
    below = np.concatenate(([0], np.cumsum(counts)[:-1]))
    above = total - below - counts

    over = _ratio(above, total)
    under = _ratio(below, total)

    even = float(np.count_nonzero(digits % 2 == 0)) / total
    odd = 1.0 - even

    prev, nxt = digits[:-1], digits[1:]
    opportunities = np.bincount(prev, minlength=10)
    same = np.bincount(prev[prev == nxt], minlength=10)
    different = np.bincount(prev[prev != nxt], minlength=10)
    matches = _ratio(same, opportunities)
    differs = _ratio(different, opportunities)

    rise = fall = 0.0
    if len(quotes) > 1:
        moves = np.diff(quotes)
        pairs = len(moves)
        rise = float(np.count_nonzero(moves > 0)) / pairs
        fall = float(np.count_nonzero(moves < 0)) / pairs

    return ProbabilitySet(
        over=tuple(float(v) for v in over),
        under=tuple(float(v) for v in under),
        matches=tuple(float(v) for v in matches),
        differs=tuple(float(v) for v in differs),
        even=even,
        odd=odd,
        rise=rise,
        fall=fall,
    )


def encode_sequence(digits: np.ndarray, quotes: np.ndarray, contract_type) -> Tuple[str, ...]:
    """
    Map the window onto single-character movement symbols.

    Parity is one symbol per tick; every other market is one symbol per
    consecutive pair. Rise/fall drops ties.
    """
    market = contract_type.value if isinstance(contract_type, ContractType) else str(contract_type)
    if market not in SEQUENCE_SYMBOLS:
        raise ConfigurationError(f"Unknown contract type: {contract_type!r}")
    yes, no = SEQUENCE_SYMBOLS[market]

    if market in ("digits", ContractType.EVEN_ODD.value):
        return tuple(yes if d % 2 == 0 else no for d in digits)

    if market == ContractType.RISE_FALL.value:
        moves = np.diff(quotes)
        return tuple(yes if m > 0 else no for m in moves if m != 0)

    prev, nxt = digits[:-1], digits[1:]
    if market == ContractType.OVER_UNDER.value:
        return tuple(yes if b > a else no for a, b in zip(prev, nxt))
    return tuple(yes if b == a else no for a, b in zip(prev, nxt))


def encode_all_sequences(digits: np.ndarray, quotes: np.ndarray) -> Dict[str, Tuple[str, ...]]:
    return {market: encode_sequence(digits, quotes, market) for market in SEQUENCE_SYMBOLS}


def compute_market_stats(
    frequency: Tuple[DigitCount, ...],
    probabilities: ProbabilitySet,
    digits: np.ndarray,
    quotes: np.ndarray,
    recent_window: int = 20,
) -> Dict[str, Dict]:
    """
    Per-market aggregates. `probabilities` must be in percentage form.

    Recent counts use the last `recent_window` ticks of the window.
    """
    recent_digits = digits[-recent_window:]
    recent_quotes = quotes[-recent_window:]

    # sorted() is stable, so ties keep digit order
    hot = sorted(frequency, key=lambda f: -f.count)[:HOT_COLD_COUNT]
    cold = sorted(frequency, key=lambda f: f.count)[:HOT_COLD_COUNT]

    even_count = int(np.count_nonzero(recent_digits % 2 == 0))
    odd_count = len(recent_digits) - even_count

    opportunities = max(len(recent_digits) - 1, 0)
    recent_matches = int(np.count_nonzero(recent_digits[:-1] == recent_digits[1:])) if opportunities else 0
    match_rate = recent_matches / opportunities * 100.0 if opportunities else 0.0

    moves = np.diff(recent_quotes)
    recent_rise = float(np.count_nonzero(moves > 0)) / len(moves) * 100.0 if len(moves) else 0.0

    return {
        ContractType.OVER_UNDER.value: {
            "hot_digits": tuple(asdict(f) for f in hot),
            "cold_digits": tuple(asdict(f) for f in cold),
        },
        ContractType.EVEN_ODD.value: {
            "even_percentage": probabilities.even,
            "odd_percentage": probabilities.odd,
            "recent_even_count": even_count,
            "recent_odd_count": odd_count,
        },
        ContractType.MATCHES_DIFFERS.value: {
            "match_rate": match_rate,
            "recent_matches": recent_matches,
            "total_opportunities": opportunities,
        },
        ContractType.RISE_FALL.value: {
            "rise_percentage": probabilities.rise,
            "fall_percentage": probabilities.fall,
            "trend": "bullish" if recent_rise > 50 else "bearish",
            "strength": abs(recent_rise - 50.0) / 50.0 if len(moves) else 0.0,
        },
    }


def build_snapshot(
    ticks: Sequence[Tick],
    setup: MarketSetup,
    thresholds: Optional[AlertThresholds] = None,
) -> Optional[AnalysisSnapshot]:
    """
    Pure recomputation: (buffer contents, setup) -> snapshot.

    Returns None when there are no ticks.
    """
    if not ticks:
        return None

    thresholds = thresholds or AlertThresholds()
    quotes, digits = extract_window(ticks, setup.tick_range)

    ratios = compute_probabilities(digits, quotes)
    probabilities = ratios.as_percentages()
    frequency = digit_frequency(digits)
    sequences = encode_all_sequences(digits, quotes)
    alerts = detect_alerts(digits, quotes, setup, probabilities, thresholds)

    return AnalysisSnapshot(
        contract_type=setup.contract_type,
        prediction_digit=setup.prediction_digit,
        digit_frequency=frequency,
        probabilities=probabilities,
        sequence=sequences[setup.contract_type.value],
        sequences=sequences,
        alerts=tuple(alerts),
        total_ticks=len(ticks),
        analysis_range=len(digits),
        average_quote=float(quotes.mean()),
        quote_volatility=float(quotes.std()),
        last_digit=int(digits[-1]),
        last_tick=ticks[-1],
        market_stats=compute_market_stats(
            frequency, probabilities, digits, quotes, thresholds.recent_window
        ),
    )


# ============================================================
# REACTIVE CONTROLLER
# ============================================================

class AnalysisEngine:
    """
    Owns the tick buffer and current MarketSetup, recomputes on every
    change and notifies subscribers exactly once per triggering event.

    Not thread-safe: callers serialise access (single writer).
    """

    # Fields whose change triggers a recomputation
    TRIGGER_FIELDS = ("tick_range", "contract_type", "prediction_digit")

    def __init__(
        self,
        buffer: Optional[TickBuffer] = None,
        setup: Optional[MarketSetup] = None,
        thresholds: Optional[AlertThresholds] = None,
    ):
        self.buffer = buffer if buffer is not None else TickBuffer()
        self._setup = setup or MarketSetup()
        self.thresholds = thresholds or AlertThresholds()
        self._snapshot: Optional[AnalysisSnapshot] = None
        self._subscribers: List[SnapshotCallback] = []

    @property
    def setup(self) -> MarketSetup:
        return self._setup

    def current_snapshot(self) -> Optional[AnalysisSnapshot]:
        return self._snapshot

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a consumer; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def on_tick(self, tick: Tick):
        """Validate, append and recompute. Invalid ticks are never appended."""
        if not isinstance(tick, Tick):
            raise InvalidTickError(f"Expected Tick, got {type(tick).__name__}")
        tick.validate()
        self.buffer.append(tick)
        self._recompute()

    append = on_tick

    def set_market_setup(self, setup: Optional[MarketSetup] = None, **changes) -> MarketSetup:
        """
        Apply a full setup or field changes atomically.

        Raises ConfigurationError and keeps the previous setup on invalid input.
        """
        if setup is not None and changes:
            raise ConfigurationError("Pass either a MarketSetup or field changes, not both")
        if setup is not None and not isinstance(setup, MarketSetup):
            raise ConfigurationError(f"Expected MarketSetup, got {type(setup).__name__}")

        new_setup = setup if setup is not None else self._setup.replace(**changes)
        previous, self._setup = self._setup, new_setup

        changed = [f for f in self.TRIGGER_FIELDS if getattr(previous, f) != getattr(new_setup, f)]
        if changed:
            logger.info(f"[ENGINE] Setup changed ({', '.join(changed)}) -> recompute")
            self._recompute()
        return new_setup

    def clear(self):
        """Drop buffered ticks, e.g. before a new symbol's ticks arrive."""
        self.buffer.clear()
        self._snapshot = None
        logger.info("[ENGINE] Buffer cleared")

    def _recompute(self):
        snapshot = build_snapshot(self.buffer.snapshot(), self._setup, self.thresholds)
        self._snapshot = snapshot
        if snapshot is None:
            return
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("[ENGINE] Snapshot subscriber failed")
