"""
Pattern and alert detection over the most recent ticks.

Rules run in a fixed order so consumers can rely on stable display:
selected prediction, streak, missing digits, parity skew, match rate,
trend strength, volatility.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from utils import (
    EVEN,
    SCOPE_ALL,
    Alert,
    ContractType,
    MarketSetup,
    ProbabilitySet,
    Severity,
)


@dataclass(frozen=True)
class AlertThresholds:
    recent_window: int = 20            # ticks, independent of tick_range
    streak_min: int = 3
    missing_min_samples: int = 15
    parity_skew_count: int = 12
    match_rate_high: float = 60.0      # percent
    match_rate_low: float = 20.0
    trend_high: float = 70.0           # percent of rises
    trend_low: float = 30.0
    volatility: float = 0.001          # mean abs relative change


def _selected_prediction(setup: MarketSetup, p: ProbabilitySet) -> List[Alert]:
    ct = setup.contract_type
    d = setup.prediction_digit

    if ct is ContractType.RISE_FALL:
        message = f"Rise: {p.rise:.1f}% | Fall: {p.fall:.1f}%"
    elif d is None:
        return []
    elif ct is ContractType.OVER_UNDER:
        message = f"Over {d}: {p.over[d]:.1f}% | Under {d}: {p.under[d]:.1f}%"
    elif ct is ContractType.MATCHES_DIFFERS:
        message = f"Matches {d}: {p.matches[d]:.1f}% | Differs {d}: {p.differs[d]:.1f}%"
    elif d == EVEN:
        message = f"Even: {p.even:.1f}% | Odd: {p.odd:.1f}%"
    else:
        message = f"Odd: {p.odd:.1f}% | Even: {p.even:.1f}%"

    return [Alert(Severity.INFO, ct.value, message)]


def detect_alerts(
    digits: np.ndarray,
    quotes: np.ndarray,
    setup: MarketSetup,
    probabilities: ProbabilitySet,
    thresholds: Optional[AlertThresholds] = None,
) -> List[Alert]:
    """
    Emit alerts for the current window.

    `probabilities` are the full-window values in percentage form; every
    other rule looks only at the last `thresholds.recent_window` ticks.
    """
    if len(digits) == 0:
        return []

    t = thresholds or AlertThresholds()
    alerts = _selected_prediction(setup, probabilities)

    recent = digits[-t.recent_window:]
    recent_quotes = quotes[-t.recent_window:]
    n = len(recent)

    # Streak: how often the current digit shows up in the recent window
    current = int(recent[-1])
    occurrences = int(np.count_nonzero(recent == current))
    if occurrences >= t.streak_min:
        alerts.append(Alert(
            Severity.INFO, SCOPE_ALL,
            f"Digit {current} appeared {occurrences} times in the last {n} ticks",
        ))

    # Missing digits
    if n >= t.missing_min_samples:
        seen = set(int(d) for d in recent)
        missing = [d for d in range(10) if d not in seen]
        if missing:
            alerts.append(Alert(
                Severity.WARNING, SCOPE_ALL,
                f"Digits {', '.join(str(d) for d in missing)} missing from the last {n} ticks",
            ))

    # Parity skew
    even_count = int(np.count_nonzero(recent % 2 == 0))
    odd_count = n - even_count
    if even_count >= t.parity_skew_count:
        alerts.append(Alert(
            Severity.INFO, ContractType.EVEN_ODD.value,
            f"Even digits dominate: {even_count} of the last {n} ticks",
        ))
    elif odd_count >= t.parity_skew_count:
        alerts.append(Alert(
            Severity.INFO, ContractType.EVEN_ODD.value,
            f"Odd digits dominate: {odd_count} of the last {n} ticks",
        ))

    # Match rate
    if n > 1:
        match_pct = float(np.count_nonzero(recent[:-1] == recent[1:])) / (n - 1) * 100.0
        if match_pct > t.match_rate_high:
            alerts.append(Alert(
                Severity.INFO, ContractType.MATCHES_DIFFERS.value,
                f"High match rate: {match_pct:.1f}% of consecutive digits repeat",
            ))
        elif match_pct < t.match_rate_low:
            alerts.append(Alert(
                Severity.INFO, ContractType.MATCHES_DIFFERS.value,
                f"Low match rate: {match_pct:.1f}% of consecutive digits repeat",
            ))

    moves = np.diff(recent_quotes)

    # Trend strength
    if len(moves):
        rise_pct = float(np.count_nonzero(moves > 0)) / len(moves) * 100.0
        if rise_pct > t.trend_high:
            alerts.append(Alert(
                Severity.INFO, ContractType.RISE_FALL.value,
                f"Strong uptrend: {rise_pct:.1f}% of recent ticks rose",
            ))
        elif rise_pct < t.trend_low:
            alerts.append(Alert(
                Severity.INFO, ContractType.RISE_FALL.value,
                f"Strong downtrend: only {rise_pct:.1f}% of recent ticks rose",
            ))

    # Volatility: mean absolute relative tick-to-tick change
    base = recent_quotes[:-1]
    valid = base != 0
    if np.any(valid):
        volatility = float(np.mean(np.abs(moves[valid]) / base[valid]))
        if volatility > t.volatility:
            alerts.append(Alert(
                Severity.WARNING, SCOPE_ALL,
                f"High volatility: {volatility * 100:.3f}% average tick change",
            ))

    return alerts
