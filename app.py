"""
Application entry point - live digit analysis session.

Responsibilities:
- Own one analysis session (engine + ingestion) with explicit open/close
- Serialise engine access between the ingestion thread and callers
- Clear stale ticks whenever the subscribed symbol changes
- Log a periodic summary of the latest snapshot

Single-command execution:
    python app.py
"""

import time
import logging
import threading
from typing import Callable, List, Optional, Tuple

from analytics import AnalysisEngine
from alerts import AlertThresholds
from ingest import DERIV_WS_URL, IngestionManager, symbol_for
from utils import (
    LIVE_BUFFER_SIZE,
    MAX_TICK_RANGE,
    ActivityMessage,
    AnalysisSnapshot,
    ConnectionState,
    ContractType,
    MarketSetup,
    Tick,
    TickBuffer,
)


logger = logging.getLogger("app")


# ---------------- Configuration ----------------
DEFAULT_SYMBOL = "vol50"
DEFAULT_SETUP = MarketSetup(
    contract_type=ContractType.OVER_UNDER,
    prediction_digit=0,
    tick_range=100,
)
BUFFER_SIZE = MAX_TICK_RANGE
SUMMARY_INTERVAL = 5.0  # seconds


class AnalysisSession:
    """
    Explicit lifecycle object owning the tick buffer, configuration and
    connection handle. Use open()/close() or a `with` block.
    """

    def __init__(
        self,
        setup: MarketSetup = DEFAULT_SETUP,
        buffer_size: int = BUFFER_SIZE,
        thresholds: Optional[AlertThresholds] = None,
        url: str = DERIV_WS_URL,
        ingestion_factory: Callable[..., IngestionManager] = IngestionManager,
    ):
        self.engine = AnalysisEngine(
            buffer=TickBuffer(maxlen=buffer_size),
            setup=setup,
            thresholds=thresholds,
        )
        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._is_open = False
        self.ingestion = ingestion_factory(
            on_tick=self._on_tick,
            on_resubscribe=self._on_resubscribe,
            on_status=self._on_status,
            url=url,
        )

    # ---------- ingestion callbacks ----------

    def _on_tick(self, tick: Tick):
        with self._lock:
            self.engine.on_tick(tick)

    def _on_resubscribe(self):
        with self._lock:
            self.engine.clear()

    def _on_status(self, state: ConnectionState):
        self._state = state
        logger.info(f"[SESSION] Connection {state.value}")

    # ---------- lifecycle ----------

    def open(self) -> "AnalysisSession":
        self._is_open = True
        logger.info("[SESSION] Opened")
        return self

    def close(self):
        if not self._is_open:
            return
        self.stop_analysis()
        self._is_open = False
        logger.info("[SESSION] Closed")

    def __enter__(self) -> "AnalysisSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def is_analyzing(self) -> bool:
        return self.ingestion.current_symbol is not None

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def current_symbol(self) -> Optional[str]:
        return self.ingestion.current_symbol

    # ---------- analysis control ----------

    def start_analysis(self, symbol: str = DEFAULT_SYMBOL):
        """Subscribe to a catalog key or raw symbol; restarts if already running."""
        if not self._is_open:
            raise RuntimeError("Session is not open")
        feed_symbol = symbol_for(symbol)
        if self.is_analyzing:
            self.ingestion.restart(feed_symbol)
        else:
            self.ingestion.start(feed_symbol)

    change_symbol = start_analysis

    def stop_analysis(self):
        if self.is_analyzing:
            self.ingestion.stop()
        with self._lock:
            self.engine.clear()

    def set_market_setup(self, setup: Optional[MarketSetup] = None, **changes) -> MarketSetup:
        with self._lock:
            return self.engine.set_market_setup(setup, **changes)

    def select_market(self, contract_type) -> MarketSetup:
        """Switch contract type, resetting the prediction to that market's default."""
        contract_type = ContractType.parse(contract_type)
        digit = None if contract_type is ContractType.RISE_FALL else 0
        return self.set_market_setup(contract_type=contract_type, prediction_digit=digit)

    @property
    def setup(self) -> MarketSetup:
        return self.engine.setup

    def current_snapshot(self) -> Optional[AnalysisSnapshot]:
        return self.engine.current_snapshot()

    def subscribe(self, callback: Callable[[AnalysisSnapshot], None]) -> Callable[[], None]:
        with self._lock:
            return self.engine.subscribe(callback)

    def recent_ticks(self, count: int = LIVE_BUFFER_SIZE) -> Tuple[Tick, ...]:
        return self.engine.buffer.get_recent(count)

    def ticks_between(self, start_epoch: int, end_epoch: int) -> Tuple[Tick, ...]:
        return self.engine.buffer.get_range(start_epoch, end_epoch)

    # ---------- recording ----------

    def start_recording(self):
        """Capture every tick from now on, beyond the buffer's eviction."""
        self.engine.buffer.start_recording()
        logger.info("[SESSION] Recording started")

    def stop_recording(self) -> List[Tick]:
        ticks = self.engine.buffer.stop_recording()
        logger.info(f"[SESSION] Recording stopped ({len(ticks)} ticks)")
        return ticks

    @property
    def is_recording(self) -> bool:
        return self.engine.buffer.is_recording

    def activity(self) -> List[ActivityMessage]:
        return self.ingestion.activity()

    def is_healthy(self) -> bool:
        return self.ingestion.is_healthy()


def log_summary(snapshot: Optional[AnalysisSnapshot]):
    if snapshot is None:
        logger.info("[APP] Waiting for ticks...")
        return

    p = snapshot.probabilities
    logger.info(
        f"[APP] {snapshot.last_tick.symbol} quote={snapshot.last_tick.quote} "
        f"digit={snapshot.last_digit} range={snapshot.analysis_range}/{snapshot.total_ticks} "
        f"even={p.even:.1f}% rise={p.rise:.1f}% fall={p.fall:.1f}% "
        f"seq={''.join(snapshot.sequence[-15:])}"
    )
    for alert in snapshot.alerts:
        level = logging.WARNING if alert.severity.value == "warning" else logging.INFO
        logger.log(level, f"[APP] [{alert.scope}] {alert.message}")


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s"
    )

    logger.info("=" * 60)
    logger.info("Digit Analytics - Live Session")
    logger.info(f"Symbol: {DEFAULT_SYMBOL} | Setup: {DEFAULT_SETUP}")
    logger.info("=" * 60)

    with AnalysisSession() as session:
        session.start_analysis(DEFAULT_SYMBOL)
        try:
            while True:
                time.sleep(SUMMARY_INTERVAL)
                log_summary(session.current_snapshot())
        except KeyboardInterrupt:
            logger.info("Shutting down...")


if __name__ == "__main__":
    main()
