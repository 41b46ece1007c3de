"""
Tests for the shared data contracts.

Tests cover:
- Tick validation and construction from feed payloads
- TickBuffer FIFO eviction, copies, clearing and recording
- MarketSetup validation and atomic replacement
"""

import dataclasses
import math

import pytest

from utils import (
    ConfigurationError,
    ContractType,
    InvalidTickError,
    MarketSetup,
    Tick,
    TickBuffer,
)


class TestTick:
    """Tests for Tick validation."""

    def test_from_message_valid(self):
        tick = Tick.from_message({"epoch": 1700000000, "quote": 1234.56, "symbol": "R_50", "id": "abc"})
        assert tick.epoch == 1700000000
        assert tick.quote == 1234.56
        assert tick.symbol == "R_50"
        assert tick.id == "abc"

    def test_from_message_without_id(self):
        tick = Tick.from_message({"epoch": 1, "quote": 1.5, "symbol": "R_10"})
        assert tick.id is None

    @pytest.mark.parametrize("payload", [
        {"epoch": 1, "symbol": "R_50"},
        {"epoch": 1, "quote": "1.23", "symbol": "R_50"},
        {"epoch": 1, "quote": math.nan, "symbol": "R_50"},
        {"epoch": 1, "quote": -1.0, "symbol": "R_50"},
        {"epoch": 1, "quote": 1e307, "symbol": "R_50"},
        {"epoch": 1, "quote": 1.23, "symbol": ""},
        {"quote": 1.23, "symbol": "R_50"},
        {"epoch": 1.5, "quote": 1.23, "symbol": "R_50"},
        None,
    ])
    def test_from_message_incomplete(self, payload):
        with pytest.raises(InvalidTickError):
            Tick.from_message(payload)

    def test_tick_is_immutable(self):
        tick = Tick(epoch=1, quote=1.0, symbol="R_50")
        with pytest.raises(dataclasses.FrozenInstanceError):
            tick.quote = 2.0


class TestTickBuffer:
    """Tests for the bounded ingest buffer."""

    def test_append_to_empty(self, tick_factory):
        buffer = TickBuffer(maxlen=10)
        buffer.append(tick_factory([1.0])[0])
        assert len(buffer) == 1

    def test_eviction_is_fifo(self, tick_factory):
        buffer = TickBuffer(maxlen=1000)
        ticks = tick_factory([1.0 + i / 1000 for i in range(1001)])
        for t in ticks:
            buffer.append(t)

        retained = buffer.snapshot()
        assert len(retained) == 1000
        assert retained[0].epoch == ticks[1].epoch
        assert retained[-1] is ticks[-1]
        assert all(t.epoch != ticks[0].epoch for t in retained)

    def test_snapshot_is_a_copy(self, tick_factory):
        buffer = TickBuffer(maxlen=5)
        buffer.append(tick_factory([1.0])[0])
        view = buffer.snapshot()
        buffer.append(tick_factory([2.0])[0])
        assert len(view) == 1
        assert len(buffer.snapshot()) == 2

    def test_accepts_mixed_symbols(self, tick_factory):
        buffer = TickBuffer(maxlen=5)
        buffer.append(tick_factory([1.0], symbol="R_50")[0])
        buffer.append(tick_factory([2.0], symbol="R_100")[0])
        assert [t.symbol for t in buffer.snapshot()] == ["R_50", "R_100"]

    def test_clear(self, tick_factory):
        buffer = TickBuffer(maxlen=5)
        for t in tick_factory([1.0, 2.0]):
            buffer.append(t)
        buffer.clear()
        assert len(buffer) == 0
        assert buffer.snapshot() == ()

    def test_get_recent_and_range(self, tick_factory):
        buffer = TickBuffer(maxlen=10)
        ticks = tick_factory([1.0, 2.0, 3.0, 4.0], start_epoch=100)
        for t in ticks:
            buffer.append(t)

        assert buffer.get_recent(2) == tuple(ticks[-2:])
        assert buffer.get_recent(0) == ()
        assert buffer.get_range(101, 102) == tuple(ticks[1:3])

    def test_recording_survives_eviction(self, tick_factory):
        buffer = TickBuffer(maxlen=2)
        buffer.start_recording()
        ticks = tick_factory([1.0, 2.0, 3.0])
        for t in ticks:
            buffer.append(t)

        assert buffer.is_recording
        assert buffer.stop_recording() == ticks
        assert not buffer.is_recording
        assert len(buffer) == 2

    def test_invalid_maxlen(self):
        with pytest.raises(ValueError):
            TickBuffer(maxlen=0)


class TestMarketSetup:
    """Tests for configuration validation."""

    def test_defaults(self):
        setup = MarketSetup()
        assert setup.contract_type is ContractType.OVER_UNDER
        assert setup.prediction_digit == 0
        assert setup.tick_range == 100

    def test_contract_type_from_string(self):
        assert MarketSetup(contract_type="rise_fall").contract_type is ContractType.RISE_FALL

    @pytest.mark.parametrize("kwargs", [
        {"tick_range": 0},
        {"tick_range": 1001},
        {"tick_range": 10.5},
        {"contract_type": "higher_lower"},
        {"prediction_digit": 10},
        {"prediction_digit": -1},
        {"contract_type": "even_odd", "prediction_digit": 2},
        {"barrier_offset": math.inf},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            MarketSetup(**kwargs)

    @pytest.mark.parametrize("tick_range", [1, 1000])
    def test_tick_range_bounds(self, tick_range):
        assert MarketSetup(tick_range=tick_range).tick_range == tick_range

    def test_even_odd_flag(self):
        assert MarketSetup(contract_type="even_odd", prediction_digit=1).prediction_digit == 1

    def test_rise_fall_without_prediction(self):
        setup = MarketSetup(contract_type="rise_fall", prediction_digit=None, barrier_offset=0.5)
        assert setup.barrier_offset == 0.5

    def test_replace_keeps_original_on_failure(self):
        setup = MarketSetup(tick_range=50)
        with pytest.raises(ConfigurationError):
            setup.replace(tick_range=5000)
        assert setup.tick_range == 50
        assert setup.replace(tick_range=60).tick_range == 60

    def test_replace_unknown_field(self):
        with pytest.raises(ConfigurationError):
            MarketSetup().replace(window=10)
