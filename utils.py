"""
Shared data models and system state definitions.

This module defines immutable data contracts used across
ingestion, analytics, and presentation layers.
"""

from dataclasses import dataclass, field, fields, is_dataclass, replace as dc_replace
from enum import Enum
from types import MappingProxyType
from typing import Deque, Dict, List, Mapping, Optional, Tuple
from collections import deque
import math
import threading
import time


MIN_TICK_RANGE = 1
MAX_TICK_RANGE = 1000
LIVE_BUFFER_SIZE = 200

DIGITS = tuple(range(10))


# ============================================================
# ERRORS
# ============================================================

class AnalyticsError(Exception):
    """Base error for the tick analysis engine."""


class ConfigurationError(AnalyticsError, ValueError):
    """Invalid MarketSetup; the previous configuration stays active."""


class InvalidTickError(AnalyticsError, ValueError):
    """Incomplete or malformed tick; the tick is dropped."""


# ============================================================
# TICKS
# ============================================================

@dataclass(frozen=True)
class Tick:
    epoch: int           # feed timestamp (s)
    quote: float
    symbol: str
    id: Optional[str] = None

    @classmethod
    def from_message(cls, payload) -> "Tick":
        """
        Build a tick from the `tick` object of a feed message.

        Raises InvalidTickError when a required field is missing or unusable.
        """
        if not isinstance(payload, dict):
            raise InvalidTickError(f"Tick payload must be an object, got {type(payload).__name__}")

        tick = cls(
            epoch=payload.get("epoch"),
            quote=payload.get("quote"),
            symbol=payload.get("symbol"),
            id=payload.get("id"),
        )
        tick.validate()
        return tick

    def validate(self):
        # bool is an int subclass; reject it explicitly
        if isinstance(self.epoch, bool) or not isinstance(self.epoch, int):
            raise InvalidTickError(f"Tick epoch must be an integer, got {self.epoch!r}")
        if isinstance(self.quote, bool) or not isinstance(self.quote, (int, float)):
            raise InvalidTickError(f"Tick quote must be numeric, got {self.quote!r}")
        try:
            price = float(self.quote)
        except OverflowError:
            raise InvalidTickError(f"Tick quote is out of range, got {self.quote!r}") from None
        if not math.isfinite(price) or price < 0:
            raise InvalidTickError(f"Tick quote must be a finite non-negative price, got {self.quote!r}")
        # the digit rule scales by 100; the scaled price must stay finite
        if not math.isfinite(price * 100.0):
            raise InvalidTickError(f"Tick quote is out of range, got {self.quote!r}")
        if not isinstance(self.symbol, str) or not self.symbol:
            raise InvalidTickError("Tick symbol must be a non-empty string")
        if self.id is not None and not isinstance(self.id, str):
            raise InvalidTickError(f"Tick id must be a string, got {self.id!r}")


class TickBuffer:
    """
    Thread-safe bounded ring buffer for a single tick series.

    Oldest ticks are dropped automatically once maxlen is exceeded.
    Readers always receive copies, never the live deque.
    """

    def __init__(self, maxlen: int = MAX_TICK_RANGE):
        if maxlen < 1:
            raise ValueError("maxlen must be >= 1")
        self.maxlen = maxlen
        self._ticks: Deque[Tick] = deque(maxlen=maxlen)
        self._recording: Optional[List[Tick]] = None
        self._lock = threading.RLock()

    def append(self, tick: Tick):
        """Append a tick, evicting the oldest one when full."""
        with self._lock:
            self._ticks.append(tick)
            if self._recording is not None:
                self._recording.append(tick)

    def snapshot(self) -> Tuple[Tick, ...]:
        """Ordered copy of every retained tick (oldest first)."""
        with self._lock:
            return tuple(self._ticks)

    def clear(self):
        """Drop all ticks (and any in-progress recording)."""
        with self._lock:
            self._ticks.clear()
            if self._recording is not None:
                self._recording = []

    def get_recent(self, count: int) -> Tuple[Tick, ...]:
        if count <= 0:
            return ()
        with self._lock:
            ticks = tuple(self._ticks)
        return ticks[-count:]

    def get_range(self, start_epoch: int, end_epoch: int) -> Tuple[Tick, ...]:
        """Ticks with start_epoch <= epoch <= end_epoch."""
        with self._lock:
            return tuple(t for t in self._ticks if start_epoch <= t.epoch <= end_epoch)

    def start_recording(self):
        """Begin capturing every appended tick, independent of eviction."""
        with self._lock:
            self._recording = []

    def stop_recording(self) -> List[Tick]:
        with self._lock:
            recorded = list(self._recording or [])
            self._recording = None
            return recorded

    @property
    def is_recording(self) -> bool:
        return self._recording is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._ticks)


# ============================================================
# CONFIGURATION
# ============================================================

class ContractType(str, Enum):
    OVER_UNDER = "over_under"
    MATCHES_DIFFERS = "matches_differs"
    RISE_FALL = "rise_fall"
    EVEN_ODD = "even_odd"

    @classmethod
    def parse(cls, value) -> "ContractType":
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unknown contract type: {value!r}") from None


EVEN = 0
ODD = 1


@dataclass(frozen=True)
class MarketSetup:
    """
    Closed, validated analysis configuration.

    For even_odd the prediction digit is a flag: 0 means even, 1 means odd.
    """
    contract_type: ContractType = ContractType.OVER_UNDER
    prediction_digit: Optional[int] = 0
    barrier_offset: Optional[float] = None
    tick_range: int = 100

    def __post_init__(self):
        object.__setattr__(self, "contract_type", ContractType.parse(self.contract_type))
        self.validate()

    def validate(self):
        tr = self.tick_range
        if isinstance(tr, bool) or not isinstance(tr, int):
            raise ConfigurationError(f"tick_range must be an integer, got {tr!r}")
        if not MIN_TICK_RANGE <= tr <= MAX_TICK_RANGE:
            raise ConfigurationError(
                f"tick_range must be within [{MIN_TICK_RANGE}, {MAX_TICK_RANGE}], got {tr}"
            )

        digit = self.prediction_digit
        if digit is not None:
            if isinstance(digit, bool) or not isinstance(digit, int):
                raise ConfigurationError(f"prediction_digit must be an integer, got {digit!r}")
            if self.contract_type is ContractType.EVEN_ODD:
                if digit not in (EVEN, ODD):
                    raise ConfigurationError(
                        f"prediction_digit for even_odd must be 0 (even) or 1 (odd), got {digit}"
                    )
            elif not 0 <= digit <= 9:
                raise ConfigurationError(f"prediction_digit must be within [0, 9], got {digit}")

        offset = self.barrier_offset
        if offset is not None:
            if isinstance(offset, bool) or not isinstance(offset, (int, float)) or not math.isfinite(offset):
                raise ConfigurationError(f"barrier_offset must be a finite number, got {offset!r}")

    def replace(self, **changes) -> "MarketSetup":
        """Return a new validated setup; self is left untouched on failure."""
        unknown = set(changes) - {"contract_type", "prediction_digit", "barrier_offset", "tick_range"}
        if unknown:
            raise ConfigurationError(f"Unknown MarketSetup field(s): {', '.join(sorted(unknown))}")
        return dc_replace(self, **changes)


# ============================================================
# ANALYSIS OUTPUT
# ============================================================

class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"


SCOPE_ALL = "all"


@dataclass(frozen=True)
class Alert:
    severity: Severity
    scope: str           # contract type value or "all"
    message: str


@dataclass(frozen=True)
class DigitCount:
    digit: int
    count: int
    percentage: float


@dataclass(frozen=True)
class ProbabilitySet:
    over: Tuple[float, ...]
    under: Tuple[float, ...]
    matches: Tuple[float, ...]
    differs: Tuple[float, ...]
    even: float
    odd: float
    rise: float
    fall: float

    @classmethod
    def empty(cls) -> "ProbabilitySet":
        zeros = (0.0,) * 10
        return cls(zeros, zeros, zeros, zeros, 0.0, 0.0, 0.0, 0.0)

    def as_percentages(self) -> "ProbabilitySet":
        def pct(values):
            return tuple(v * 100.0 for v in values)

        return ProbabilitySet(
            over=pct(self.over),
            under=pct(self.under),
            matches=pct(self.matches),
            differs=pct(self.differs),
            even=self.even * 100.0,
            odd=self.odd * 100.0,
            rise=self.rise * 100.0,
            fall=self.fall * 100.0,
        )


@dataclass(frozen=True)
class AnalysisSnapshot:
    """
    One immutable, fully-computed bundle of statistics.

    Probabilities and percentages are on a 0-100 scale.
    """
    contract_type: ContractType
    prediction_digit: Optional[int]
    digit_frequency: Tuple[DigitCount, ...]
    probabilities: ProbabilitySet
    sequence: Tuple[str, ...]
    sequences: Mapping[str, Tuple[str, ...]]
    alerts: Tuple[Alert, ...]
    total_ticks: int
    analysis_range: int
    average_quote: float
    quote_volatility: float
    last_digit: int
    last_tick: Tick
    market_stats: Mapping[str, Mapping]
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        # shared between subscribers, so nested containers are made read-only too
        object.__setattr__(self, "sequences", _freeze(self.sequences))
        object.__setattr__(self, "market_stats", _freeze(self.market_stats))

    def to_dict(self) -> Dict:
        """JSON-serialisable view for UI consumers."""
        return _plain(self)


def _freeze(value):
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# ============================================================
# TRANSPORT STATE
# ============================================================

class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ActivityMessage:
    type: str            # connection | subscription | tick | error
    data: str
    timestamp: float = field(default_factory=time.time)
