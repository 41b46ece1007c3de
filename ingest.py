"""
Asynchronous real-time tick ingestion from the Deriv WebSocket API.

Responsibilities:
- Maintain a resilient WebSocket connection with backoff
- Subscribe / forget a single tick stream
- Parse tick messages and hand valid ticks to the engine
- Report connection-state transitions separately from tick data
- Support graceful stop and restart for symbol changes
"""

import asyncio
import json
import time
import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

import websockets

from utils import ActivityMessage, ConnectionState, InvalidTickError, Tick


logger = logging.getLogger("ingest")

DERIV_WS_URL = "wss://ws.binaryws.com/websockets/v3?app_id=1089"

MAX_RETRIES = 5
MAX_BACKOFF = 30
ACTIVITY_MAX_LEN = 100
HEALTH_TIMEOUT = 10.0  # seconds without a message

VOLATILITY_SYMBOLS = {
    "vol10": {"symbol": "R_10", "display_name": "Volatility 10 Index", "tick_frequency": "~2 seconds"},
    "vol10_1s": {"symbol": "1HZ10V", "display_name": "Volatility 10 (1s) Index", "tick_frequency": "1 second"},
    "vol25": {"symbol": "R_25", "display_name": "Volatility 25 Index", "tick_frequency": "~2 seconds"},
    "vol25_1s": {"symbol": "1HZ25V", "display_name": "Volatility 25 (1s) Index", "tick_frequency": "1 second"},
    "vol50": {"symbol": "R_50", "display_name": "Volatility 50 Index", "tick_frequency": "~2 seconds"},
    "vol50_1s": {"symbol": "1HZ50V", "display_name": "Volatility 50 (1s) Index", "tick_frequency": "1 second"},
    "vol75": {"symbol": "R_75", "display_name": "Volatility 75 Index", "tick_frequency": "~2 seconds"},
    "vol75_1s": {"symbol": "1HZ75V", "display_name": "Volatility 75 (1s) Index", "tick_frequency": "1 second"},
    "vol100": {"symbol": "R_100", "display_name": "Volatility 100 Index", "tick_frequency": "~2 seconds"},
    "vol100_1s": {"symbol": "1HZ100V", "display_name": "Volatility 100 (1s) Index", "tick_frequency": "1 second"},
}

TickCallback = Callable[[Tick], None]
StatusCallback = Callable[[ConnectionState], None]


def symbol_for(volatility: str) -> str:
    """Map a catalog key (e.g. 'vol50') to its feed symbol; raw symbols pass through."""
    entry = VOLATILITY_SYMBOLS.get(volatility)
    return entry["symbol"] if entry else volatility


def subscribe_message(symbol: str) -> dict:
    return {"ticks": symbol, "subscribe": 1}


def forget_message(symbol: str) -> dict:
    return {"forget": symbol, "unsubscribe": 1}


def parse_tick_message(data: dict) -> Optional[Tick]:
    """
    Return a Tick for `msg_type == "tick"` messages, None for anything else.

    Raises InvalidTickError for tick messages with missing fields.
    """
    if data.get("msg_type") != "tick":
        return None
    return Tick.from_message(data.get("tick"))


def parse_error_message(data: dict) -> Optional[str]:
    if data.get("msg_type") == "error" and data.get("error"):
        error = data["error"]
        return error.get("message") or error.get("code") or "Unknown error"
    return None


class DerivIngestor:
    """
    Async WebSocket ingestor for one symbol with graceful shutdown support.
    """

    def __init__(
        self,
        symbol: str,
        on_tick: TickCallback,
        on_status: Optional[StatusCallback] = None,
        url: str = DERIV_WS_URL,
    ):
        self.symbol = symbol
        self.url = url
        self.on_tick = on_tick
        self.on_status = on_status
        self.activity: Deque[ActivityMessage] = deque(maxlen=ACTIVITY_MAX_LEN)
        self.state = ConnectionState.DISCONNECTED
        self.last_message_time: Optional[float] = None
        self._running = False
        self._stop_requested = False
        self._task: Optional[asyncio.Task] = None

    def _set_state(self, state: ConnectionState):
        if state == self.state:
            return
        self.state = state
        if self.on_status:
            try:
                self.on_status(state)
            except Exception:
                logger.exception("[INGEST] Status callback failed")

    def _record(self, kind: str, data: str):
        self.activity.append(ActivityMessage(type=kind, data=data))

    def handle_message(self, raw):
        """Dispatch one raw feed message. Bad messages are logged and dropped."""
        self.last_message_time = time.time()

        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"[INGEST] Message parse error: {e}")
            self._record("error", f"Message parse error: {e}")
            return

        try:
            tick = parse_tick_message(data)
        except InvalidTickError as e:
            logger.warning(f"[INGEST] Invalid tick dropped: {e}")
            self._record("error", "Invalid tick data received")
            return

        if tick is not None:
            try:
                self.on_tick(tick)
            except InvalidTickError as e:
                logger.warning(f"[INGEST] Engine rejected tick: {e}")
                self._record("error", f"Tick rejected: {e}")
                return
            except Exception as e:
                logger.exception(f"[INGEST] Tick handler failed for {tick.symbol}")
                self._record("error", f"Tick handler failed: {e}")
                return
            self._record("tick", f"Tick: {tick.symbol} - {tick.quote}")
            return

        error = parse_error_message(data)
        if error:
            logger.error(f"[INGEST] API error: {error}")
            self._record("error", f"API Error: {error}")
        elif data.get("msg_type") == "subscribe" or data.get("subscription"):
            self._record("subscription", f"Subscription confirmed for {self.symbol}")

    async def _forget(self, ws):
        try:
            await ws.send(json.dumps(forget_message(self.symbol)))
            self._record("subscription", f"Unsubscribed from {self.symbol}")
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"[INGEST] {self.symbol} already closed, skip forget")

    async def _connect(self):
        backoff = 1
        retry_count = 0

        while self._running:
            try:
                self._set_state(ConnectionState.CONNECTING)
                logger.info(f"[INGEST] Connecting for {self.symbol}")
                async with websockets.connect(
                    self.url,
                    ping_interval=20,
                    ping_timeout=10,
                    close_timeout=5
                ) as ws:
                    self._set_state(ConnectionState.CONNECTED)
                    self._record("connection", "Connected to Deriv WebSocket")
                    logger.info(f"[INGEST] ✓ Connected, subscribing to {self.symbol}")
                    backoff = 1
                    retry_count = 0

                    await ws.send(json.dumps(subscribe_message(self.symbol)))
                    try:
                        async for msg in ws:
                            if not self._running:
                                break
                            self.handle_message(msg)
                    finally:
                        if not self._running:
                            await self._forget(ws)

                self._set_state(ConnectionState.DISCONNECTED)
                if self._running:
                    logger.info(f"[INGEST] {self.symbol} stream closed normally")
                break

            except asyncio.CancelledError:
                logger.info(f"[INGEST] {self.symbol} task cancelled")
                break
            except websockets.exceptions.ConnectionClosedOK:
                # Normal closure (1000): do not reconnect
                logger.info(f"[INGEST] {self.symbol} connection closed normally")
                break
            except websockets.exceptions.InvalidStatus as e:
                retry_count += 1
                status = e.response.status_code
                self._set_state(ConnectionState.DISCONNECTED)
                self._record("error", f"Connection failed: HTTP {status}")
                logger.warning(f"[INGEST] {self.symbol} HTTP error: {status}")
                if retry_count >= MAX_RETRIES:
                    logger.error(f"[INGEST] ❌ {self.symbol} - Giving up after {MAX_RETRIES} failures")
                    break
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF)
            except (OSError, websockets.exceptions.WebSocketException) as e:
                self._set_state(ConnectionState.DISCONNECTED)
                if not self._running:
                    break
                retry_count += 1
                self._record("error", f"Disconnected from Deriv WebSocket: {e}")
                logger.warning(f"[INGEST] {self.symbol} error: {e}")
                if retry_count >= MAX_RETRIES:
                    logger.error(f"[INGEST] ❌ {self.symbol} - Max retries exceeded")
                    break
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF)
            except Exception as e:
                self._set_state(ConnectionState.DISCONNECTED)
                if not self._running:
                    break
                retry_count += 1
                self._record("error", f"Unexpected error: {e}")
                logger.exception(f"[INGEST] {self.symbol} unexpected error")
                if retry_count >= MAX_RETRIES:
                    logger.error(f"[INGEST] ❌ {self.symbol} - Max retries exceeded")
                    break
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF)

    async def run(self):
        """Run ingestion until stopped or retries are exhausted."""
        if self._stop_requested:
            return
        self._running = True
        self._task = asyncio.create_task(self._connect())
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._set_state(ConnectionState.DISCONNECTED)

    def stop(self):
        """Signal the task to stop."""
        logger.info("[INGEST] Stop requested...")
        self._stop_requested = True
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()

    def is_healthy(self, timeout: float = HEALTH_TIMEOUT) -> bool:
        if self.last_message_time is None:
            return False
        return time.time() - self.last_message_time < timeout


class IngestionManager:
    """
    Manages ingestion lifecycle with support for symbol changes.

    This manager:
    - Runs ingestion in a separate thread with its own event loop
    - Calls on_resubscribe before any tick of a new symbol is delivered
    - Cleans up resources properly
    """

    def __init__(
        self,
        on_tick: TickCallback,
        on_resubscribe: Optional[Callable[[], None]] = None,
        on_status: Optional[StatusCallback] = None,
        url: str = DERIV_WS_URL,
    ):
        self.on_tick = on_tick
        self.on_resubscribe = on_resubscribe
        self.on_status = on_status
        self.url = url
        self._ingestor: Optional[DerivIngestor] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._current_symbol: Optional[str] = None
        self._thread_lock = threading.Lock()
        self._activity: Deque[ActivityMessage] = deque(maxlen=ACTIVITY_MAX_LEN)

    def _run_async_loop(self, ingestor: DerivIngestor):
        """Run async event loop in thread."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        try:
            self._loop.run_until_complete(ingestor.run())
        except Exception as e:
            logger.error(f"[INGEST] Loop error: {e}")
        finally:
            self._loop.close()
            self._loop = None

    def _make_ingestor(self, symbol: str) -> DerivIngestor:
        ingestor = DerivIngestor(
            symbol=symbol,
            on_tick=self.on_tick,
            on_status=self.on_status,
            url=self.url,
        )
        # Share one activity log across restarts
        ingestor.activity = self._activity
        return ingestor

    def start(self, symbol: str):
        """Start ingestion for a symbol."""
        with self._thread_lock:
            self._current_symbol = symbol
            if self.on_resubscribe:
                self.on_resubscribe()

            self._ingestor = self._make_ingestor(symbol)
            self._thread = threading.Thread(
                target=self._run_async_loop,
                args=(self._ingestor,),
                daemon=True
            )
            self._thread.start()
            self._activity.append(ActivityMessage("subscription", f"Subscribed to {symbol}"))
            logger.info(f"[INGEST] Started for: {symbol}")

    def stop(self):
        """Stop current ingestion."""
        with self._thread_lock:
            if self._ingestor and self._loop and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._ingestor.stop)
            elif self._ingestor:
                self._ingestor.stop()

            if self._thread and self._thread.is_alive():
                self._thread.join(timeout=3.0)

            self._ingestor = None
            self._thread = None
            self._current_symbol = None
            logger.info("[INGEST] Stopped")

    def restart(self, new_symbol: str) -> bool:
        """Stop current ingestion and restart with a new symbol."""
        if new_symbol == self._current_symbol:
            logger.info("[INGEST] Symbol unchanged, skipping restart")
            return False

        logger.info(f"[INGEST] Restarting: {self._current_symbol} → {new_symbol}")
        self.stop()
        self.start(new_symbol)
        return True

    @property
    def current_symbol(self) -> Optional[str]:
        return self._current_symbol

    @property
    def state(self) -> ConnectionState:
        if self._ingestor is None:
            return ConnectionState.DISCONNECTED
        return self._ingestor.state

    def is_healthy(self, timeout: float = HEALTH_TIMEOUT) -> bool:
        return self._ingestor is not None and self._ingestor.is_healthy(timeout)

    def activity(self) -> List[ActivityMessage]:
        return list(self._activity)
