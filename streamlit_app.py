"""
Streamlit dashboard for live digit analysis.

The analysis session runs in-process: ingestion lives in a background
thread owned by a cached AnalysisSession, and the page only reads the
latest immutable snapshot on every rerun (no file I/O).

Run:
    streamlit run streamlit_app.py
"""

import time
import json
import datetime
import dataclasses
import logging

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from app import AnalysisSession
from ingest import VOLATILITY_SYMBOLS
from utils import (
    MAX_TICK_RANGE,
    MIN_TICK_RANGE,
    ConfigurationError,
    ConnectionState,
    ContractType,
    Severity,
)

# ---------------- LOGGING SETUP ----------------
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger("dashboard")

# ---------------- CONSTANTS ----------------
SEQUENCE_DISPLAY_LEN = 15
REFRESH_OPTIONS = [0.5, 1.0, 2.0, 5.0]

CONTRACT_LABELS = {
    ContractType.OVER_UNDER: "Over/Under",
    ContractType.MATCHES_DIFFERS: "Matches/Differs",
    ContractType.RISE_FALL: "Rise/Fall",
    ContractType.EVEN_ODD: "Even/Odd",
}

SEQUENCE_COLORS = {
    "E": "#40916c", "O": "#00d4ff",
    "R": "#40916c", "F": "#e94560",
    "U": "#e94560",
    "M": "#40916c", "D": "#00d4ff",
}
OVER_UNDER_COLORS = {"O": "#40916c", "U": "#e94560"}


# ---------------- SESSION (SINGLETON) ----------------
@st.cache_resource
def get_session() -> AnalysisSession:
    return AnalysisSession().open()


def selected_prediction_cards(snapshot, setup):
    """Two complementary probabilities for the configured prediction."""
    p = snapshot.probabilities
    d = setup.prediction_digit
    ct = setup.contract_type

    if ct is ContractType.RISE_FALL:
        return [("Rise", p.rise, "Next tick higher than current"),
                ("Fall", p.fall, "Next tick lower than current")]
    if d is None:
        return []
    if ct is ContractType.OVER_UNDER:
        return [(f"Over {d}", p.over[d], f"Next digit greater than {d}"),
                (f"Under {d}", p.under[d], f"Next digit less than {d}")]
    if ct is ContractType.MATCHES_DIFFERS:
        return [(f"Matches {d}", p.matches[d], f"Next digit equals {d}"),
                (f"Differs from {d}", p.differs[d], f"Next digit differs from {d}")]
    first, second = (("Even", p.even), ("Odd", p.odd)) if d == 0 else (("Odd", p.odd), ("Even", p.even))
    return [(first[0], first[1], f"Probability of {first[0]} occurrence"),
            (second[0], second[1], f"Probability of {second[0]} occurrence")]


def render_sequence(sequence, contract_type):
    tail = sequence[-SEQUENCE_DISPLAY_LEN:]
    colors = OVER_UNDER_COLORS if contract_type is ContractType.OVER_UNDER else SEQUENCE_COLORS
    spans = "".join(
        f'<span style="color:{colors.get(c, "#a0a0a0")}; font-weight:700; margin-right:8px;">{c}</span>'
        for c in tail
    )
    st.markdown(f'<div style="font-size:1.6rem; font-family:monospace;">{spans}</div>', unsafe_allow_html=True)
    st.caption(f"Last {len(tail)} of {len(sequence)} movements")


# Page Config
st.set_page_config(
    page_title="Digit Analytics Dashboard",
    layout="wide",
    initial_sidebar_state="expanded"
)

session = get_session()

st.markdown("""
<style>
    .stMetric {
        background: linear-gradient(135deg, #1a1a2e 0%, #16213e 100%);
        padding: 12px;
        border-radius: 10px;
        border: 1px solid #0f3460;
    }
    .stMetric label { color: #e94560 !important; font-size: 0.85rem; }
    .stMetric [data-testid="stMetricValue"] { font-size: 1.5rem; }
</style>
""", unsafe_allow_html=True)


# ================== SIDEBAR ==================
with st.sidebar:
    st.header("⚙️ Analysis Parameters")

    is_running = session.is_analyzing
    setup = session.setup

    st.subheader("📊 Market")
    volatility_keys = list(VOLATILITY_SYMBOLS)
    volatility = st.selectbox(
        "Volatility Index",
        volatility_keys,
        index=volatility_keys.index("vol50"),
        format_func=lambda k: f"{VOLATILITY_SYMBOLS[k]['display_name']} ({VOLATILITY_SYMBOLS[k]['tick_frequency']})",
    )

    contract_types = list(CONTRACT_LABELS)
    contract_type = st.radio(
        "Contract Type",
        contract_types,
        index=contract_types.index(setup.contract_type),
        format_func=lambda ct: CONTRACT_LABELS[ct],
    )
    if contract_type is not setup.contract_type:
        setup = session.select_market(contract_type)

    if contract_type is ContractType.EVEN_ODD:
        choice = st.radio("Prediction", ["Even", "Odd"], index=setup.prediction_digit or 0, horizontal=True)
        prediction = 0 if choice == "Even" else 1
    elif contract_type is ContractType.RISE_FALL:
        prediction = None
    else:
        prediction = st.select_slider("Prediction Digit", options=list(range(10)), value=setup.prediction_digit or 0)

    tick_range = st.number_input(
        "Tick Range", min_value=MIN_TICK_RANGE, max_value=MAX_TICK_RANGE, value=setup.tick_range, step=10
    )
    refresh_rate = st.selectbox("Refresh Rate", REFRESH_OPTIONS, index=1, format_func=lambda x: f"{x}s")

    try:
        session.set_market_setup(prediction_digit=prediction, tick_range=int(tick_range))
    except ConfigurationError as e:
        st.error(str(e))

    st.divider()

    st.subheader("🎮 Control")
    col1, col2 = st.columns(2)
    start_clicked = col1.button("▶️ Start", disabled=is_running, use_container_width=True, type="primary")
    stop_clicked = col2.button("⏹️ Stop", disabled=not is_running, use_container_width=True)

    if start_clicked:
        session.start_analysis(volatility)
        st.rerun()

    if stop_clicked:
        session.stop_analysis()
        st.rerun()

    # Switching symbol while running resubscribes (and clears the buffer)
    if is_running and session.current_symbol != VOLATILITY_SYMBOLS[volatility]["symbol"]:
        session.change_symbol(volatility)

    st.subheader("⏺️ Recording")
    if session.is_recording:
        if st.button("Stop Recording", use_container_width=True):
            st.session_state["recorded_ticks"] = session.stop_recording()
            st.rerun()
    elif st.button("Start Recording", disabled=not is_running, use_container_width=True):
        session.start_recording()
        st.rerun()

    recorded = st.session_state.get("recorded_ticks")
    if recorded:
        st.download_button(
            f"Download {len(recorded)} Ticks (CSV)",
            pd.DataFrame([dataclasses.asdict(t) for t in recorded]).to_csv(index=False),
            "recorded_ticks.csv",
            "text/csv",
            use_container_width=True,
        )

    st.divider()
    state = session.connection_state
    badge = {"connected": "🟢", "connecting": "🟡", "disconnected": "⚫"}[state.value]
    st.markdown(f"{badge} **{state.value.upper()}**")
    if is_running:
        st.caption(f"Subscribed to {session.current_symbol}")


# ================== MAIN CONTENT ==================
st.title("Digit Analytics Dashboard")
st.caption(f"Analysis - {CONTRACT_LABELS[session.setup.contract_type]}")

if not session.is_analyzing:
    st.info("👈 **Pick a market and press Start** to begin live analysis.")
    st.stop()

snapshot = session.current_snapshot()

if snapshot is None:
    st.warning("⏳ **Waiting for ticks...**")
    if session.connection_state is not ConnectionState.CONNECTED:
        st.caption("Connecting to the tick feed.")
    time.sleep(refresh_rate)
    st.rerun()

setup = session.setup
last = snapshot.last_tick

# 1. Live tick
c1, c2, c3, c4 = st.columns(4)
c1.metric("Last Quote", f"{last.quote}")
c2.metric("Last Digit", snapshot.last_digit)
c3.metric("Average Quote", f"{snapshot.average_quote:.4f}")
c4.metric("Quote Std Dev", f"{snapshot.quote_volatility:.5f}")

recent = session.recent_ticks()
quote_fig = go.Figure(go.Scatter(
    x=[datetime.datetime.fromtimestamp(t.epoch) for t in recent],
    y=[t.quote for t in recent],
    mode="lines",
    line=dict(color="#00d4ff", width=1.5),
))
quote_fig.update_layout(
    title=f"Last {len(recent)} Quotes", height=250, margin=dict(l=10, r=10, t=30, b=30),
    template="plotly_dark",
)
st.plotly_chart(quote_fig, use_container_width=True, key="quote_line")

# 2. Selected prediction
cards = selected_prediction_cards(snapshot, setup)
if cards:
    st.subheader("Selected Prediction Analysis")
    cols = st.columns(len(cards))
    for col, (label, value, help_text) in zip(cols, cards):
        col.metric(label, f"{value:.1f}%", help=help_text)

# 3. Digit distribution
freq = pd.DataFrame([{"digit": f.digit, "count": f.count, "percentage": f.percentage}
                     for f in snapshot.digit_frequency])
fig = go.Figure()
fig.add_trace(go.Bar(
    x=freq["digit"],
    y=freq["percentage"],
    text=[f"{v:.1f}%" for v in freq["percentage"]],
    marker_color=[
        "#e94560" if d == snapshot.last_digit else ("#f4a261" if d == setup.prediction_digit else "#00d4ff")
        for d in freq["digit"]
    ],
))
fig.update_layout(
    title="Digit Distribution", height=300, margin=dict(l=10, r=10, t=30, b=30),
    template="plotly_dark", xaxis=dict(dtick=1), yaxis_title="%",
)
st.plotly_chart(fig, use_container_width=True, key="digit_distribution")

# 4. Sequence
st.subheader(f"{CONTRACT_LABELS[setup.contract_type]} Sequence")
if snapshot.sequence:
    render_sequence(snapshot.sequence, setup.contract_type)
else:
    st.caption("Not enough ticks for a sequence yet.")

# 5. Alerts & stats
a_col, s_col = st.columns(2)
with a_col:
    st.subheader("Alerts")
    for alert in snapshot.alerts:
        text = f"**{alert.scope}** · {alert.message}"
        if alert.severity is Severity.WARNING:
            st.warning(text)
        else:
            st.info(text)
    if not snapshot.alerts:
        st.caption("No alerts.")

with s_col:
    st.subheader("Market Stats")
    stats = snapshot.market_stats[setup.contract_type.value]
    if setup.contract_type is ContractType.OVER_UNDER:
        st.dataframe(pd.DataFrame({
            "hot": [f"{h['digit']} ({h['percentage']:.1f}%)" for h in stats["hot_digits"]],
            "cold": [f"{c['digit']} ({c['percentage']:.1f}%)" for c in stats["cold_digits"]],
        }), hide_index=True, use_container_width=True)
    else:
        st.json(dict(stats))

# 6. Activity & export
with st.expander("Activity Log"):
    rows = [
        {"time": datetime.datetime.fromtimestamp(m.timestamp).strftime("%H:%M:%S"), "type": m.type, "message": m.data}
        for m in reversed(session.activity())
    ]
    if rows:
        st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)
    else:
        st.caption("No activity yet.")

st.download_button(
    "Download Snapshot (JSON)", json.dumps(snapshot.to_dict(), indent=2), "snapshot.json", "application/json"
)

# ================== FOOTER ==================
st.markdown("---")
st.caption(
    f"Based on {snapshot.analysis_range} of {snapshot.total_ticks} buffered ticks • "
    f"Last minute: {len(session.ticks_between(last.epoch - 60, last.epoch))} ticks • "
    f"Range: {setup.tick_range} • Refresh: {refresh_rate}s"
)

# Auto-refresh
time.sleep(refresh_rate)
st.rerun()
