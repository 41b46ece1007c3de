"""
Tests for pattern and alert detection.

Tests cover:
- Selected prediction summaries per contract type
- Streak, missing digit, parity, match rate, trend and volatility rules
- Stable rule ordering and tunable thresholds
"""

import numpy as np
import pytest

from alerts import AlertThresholds, detect_alerts
from analytics import compute_probabilities, extract_window
from utils import MarketSetup, Severity


def run(ticks, setup=None, thresholds=None):
    setup = setup or MarketSetup(prediction_digit=None)
    quotes, digits = extract_window(ticks, setup.tick_range)
    probabilities = compute_probabilities(digits, quotes).as_percentages()
    return detect_alerts(digits, quotes, setup, probabilities, thresholds or AlertThresholds())


def find(alerts, prefix):
    return [a for a in alerts if a.message.startswith(prefix)]


class TestSelectedPrediction:
    """Tests for the selected prediction summary."""

    def test_over_under(self, digit_ticks):
        alerts = run(digit_ticks([1, 5, 8, 9]), MarketSetup(prediction_digit=5))
        first = alerts[0]
        assert first.severity is Severity.INFO
        assert first.scope == "over_under"
        assert first.message == "Over 5: 50.0% | Under 5: 25.0%"

    def test_matches_differs(self, digit_ticks):
        setup = MarketSetup(contract_type="matches_differs", prediction_digit=3)
        alerts = run(digit_ticks([3, 3, 5, 3, 3]), setup)
        assert alerts[0].scope == "matches_differs"
        assert alerts[0].message == "Matches 3: 66.7% | Differs 3: 33.3%"

    @pytest.mark.parametrize("flag,prefix", [(0, "Even:"), (1, "Odd:")])
    def test_even_odd_flag(self, digit_ticks, flag, prefix):
        setup = MarketSetup(contract_type="even_odd", prediction_digit=flag)
        alerts = run(digit_ticks([2, 4, 5]), setup)
        assert alerts[0].scope == "even_odd"
        assert alerts[0].message.startswith(prefix)

    def test_rise_fall_needs_no_digit(self, tick_factory):
        setup = MarketSetup(contract_type="rise_fall", prediction_digit=None)
        alerts = run(tick_factory([1.0, 2.0, 1.5]), setup)
        assert alerts[0].message == "Rise: 50.0% | Fall: 50.0%"

    def test_no_prediction_no_summary(self, digit_ticks):
        alerts = run(digit_ticks([1, 2, 3]), MarketSetup(prediction_digit=None))
        assert not any(a.scope == "over_under" for a in alerts)


class TestPatternRules:
    """Tests for the recent-window rules."""

    def test_twenty_identical_digits(self, digit_ticks):
        alerts = run(digit_ticks([7] * 20))

        streak = find(alerts, "Digit 7 appeared")
        assert len(streak) == 1
        assert streak[0].message == "Digit 7 appeared 20 times in the last 20 ticks"

        missing = find(alerts, "Digits ")
        assert len(missing) == 1
        assert missing[0].severity is Severity.WARNING
        assert missing[0].message.startswith("Digits 0, 1, 2, 3, 4, 5, 6, 8, 9 missing")

    def test_rule_order(self, digit_ticks):
        alerts = run(digit_ticks([7] * 20), MarketSetup(prediction_digit=0))
        scopes = [a.scope for a in alerts]
        assert scopes == ["over_under", "all", "all", "even_odd", "matches_differs", "rise_fall"]
        assert alerts[3].message.startswith("Odd digits dominate")
        assert alerts[4].message.startswith("High match rate")
        assert alerts[5].message.startswith("Strong downtrend")

    def test_streak_below_threshold(self, digit_ticks):
        alerts = run(digit_ticks([1, 2, 1, 3]))
        assert not [a for a in alerts if "appeared" in a.message]

    def test_streak_uses_recent_window_only(self, digit_ticks):
        # nine appears 12 times in the window but only twice in the last 20 ticks
        alerts = run(digit_ticks([9] * 10 + list(range(10)) * 2))
        assert not find(alerts, "Digit 9 appeared")

    def test_missing_needs_enough_samples(self, digit_ticks):
        assert not find(run(digit_ticks([7] * 14)), "Digits ")
        assert find(run(digit_ticks([7] * 15)), "Digits ")

    def test_no_missing_when_all_digits_seen(self, digit_ticks):
        assert not find(run(digit_ticks(list(range(10)) * 2)), "Digits ")

    def test_parity_balanced(self, digit_ticks):
        alerts = run(digit_ticks(list(range(10)) * 2))
        assert not [a for a in alerts if a.scope == "even_odd"]

    def test_even_skew(self, digit_ticks):
        alerts = run(digit_ticks([0, 2, 4, 6, 8, 1] * 3 + [2, 4]))
        assert find(alerts, "Even digits dominate")

    def test_low_match_rate(self, digit_ticks):
        alerts = run(digit_ticks(list(range(10)) * 2))
        assert find(alerts, "Low match rate: 0.0%")

    def test_match_rate_in_band(self, digit_ticks):
        # 19 pairs, 6 repeats -> 31.6%
        digits = [0, 0, 1, 1, 2, 2, 3, 3, 4, 4, 5, 5, 6, 7, 8, 9, 0, 1, 2, 3]
        alerts = run(digit_ticks(digits))
        assert not [a for a in alerts if a.scope == "matches_differs"]

    def test_strong_uptrend(self, digit_ticks):
        alerts = run(digit_ticks([1] * 20, bases=list(range(1000, 1020))))
        assert find(alerts, "Strong uptrend: 100.0%")

    def test_volatility(self, tick_factory):
        alerts = run(tick_factory([100.0, 101.0] * 10))
        vol = find(alerts, "High volatility")
        assert len(vol) == 1
        assert vol[0].severity is Severity.WARNING
        assert alerts[-1] is vol[0]

    def test_calm_market_has_no_volatility_alert(self, tick_factory):
        quotes = [1000.0 + i * 0.01 for i in range(20)]
        assert not find(run(tick_factory(quotes)), "High volatility")

    def test_single_tick(self, digit_ticks):
        alerts = run(digit_ticks([4]))
        assert alerts == []

    def test_empty(self):
        empty_digits = np.array([], dtype=np.int64)
        empty_quotes = np.array([], dtype=np.float64)
        probabilities = compute_probabilities(empty_digits, empty_quotes)
        assert detect_alerts(empty_digits, empty_quotes, MarketSetup(), probabilities) == []

    def test_default_thresholds(self, digit_ticks):
        quotes, digits = extract_window(digit_ticks([7] * 20), 100)
        probabilities = compute_probabilities(digits, quotes).as_percentages()
        setup = MarketSetup(prediction_digit=None)
        assert detect_alerts(digits, quotes, setup, probabilities, None) == detect_alerts(
            digits, quotes, setup, probabilities, AlertThresholds()
        )


class TestThresholds:
    def test_custom_streak_threshold(self, digit_ticks):
        ticks = digit_ticks([1, 2, 3, 1])
        assert find(run(ticks, thresholds=AlertThresholds(streak_min=2)), "Digit 1 appeared 2")

    def test_custom_recent_window(self, digit_ticks):
        alerts = run(digit_ticks([7] * 10), thresholds=AlertThresholds(recent_window=5, missing_min_samples=5))
        assert find(alerts, "Digit 7 appeared 5 times in the last 5 ticks")
        assert find(alerts, "Digits ")
