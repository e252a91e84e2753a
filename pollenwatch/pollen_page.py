"""Streamlit pollen report page.

Run with ``streamlit run pollenwatch/pollen_page.py``.
"""

import asyncio
import sys
from pathlib import Path

import altair as alt
import streamlit as st

# Make sure the repository root is on sys.path so `pollenwatch` can be imported
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from pollenwatch.config.api_config import configure_logging, load_settings
from pollenwatch.lib.errors import ConfigurationError, FailureKind
from pollenwatch.lib.geocode import build_geolocator, reverse_geocode
from pollenwatch.lib.location import CityPositionSensor, LocationProvider, StaticPositionSensor
from pollenwatch.lib.models import Coordinate
from pollenwatch.lib.normalize import forecast_to_frame, summarize
from pollenwatch.lib.pipeline import Failed, Fetching, Idle, Locating, PipelineController, Ready
from pollenwatch.lib.pollen_api import build_forecast_client
from pollenwatch.lib.risk import classify

ACCENT_GRADIENT = "linear-gradient(90deg, #1dd1a1, #f7d794, #ff6b6b)"

# Re-injected on every rerun; Streamlit drops elements a run does not redraw.
PAGE_CSS = f"""
<style>
.pollen-section {{
    margin: 1.5rem 0 0.75rem;
    padding-bottom: 0.25rem;
    font-size: 1.4rem;
    font-weight: 700;
    border-bottom: 3px solid;
    border-image: {ACCENT_GRADIENT} 1;
}}
.risk-badge {{
    display: inline-block;
    padding: 2px 10px;
    border-radius: 999px;
    color: #ffffff;
    font-weight: 700;
}}
</style>
"""

FAILURE_TITLES = {
    FailureKind.LOCATION: "📍 We couldn't find your location",
    FailureKind.SERVICE: "🌐 The pollen service is unreachable",
    FailureKind.DATA: "🧩 The pollen data looks wrong",
    FailureKind.CONFIG: "⚙️ Configuration problem",
}


def section_heading(text: str, emoji: str) -> None:
    st.markdown(f'<div class="pollen-section">{emoji} {text}</div>', unsafe_allow_html=True)


def risk_badge(tier) -> str:
    return f'<span class="risk-badge" style="background:{tier.color};">{tier.label}</span>'


@st.cache_resource
def get_forecast_client():
    """One client per process; it owns the in-flight request table."""
    return build_forecast_client(load_settings())


@st.cache_data(ttl=3600, show_spinner=False)
def city_name_for(latitude: float, longitude: float) -> str:
    settings = load_settings()
    return reverse_geocode(Coordinate(latitude, longitude), build_geolocator(settings.reverse_geocode_api_key))


def get_controller(sensor_key: str, sensor) -> PipelineController:
    """Reuse the session's controller until the location input changes."""

    current = st.session_state.get("pollen_controller")
    if current is not None and st.session_state.get("pollen_sensor_key") == sensor_key:
        return current
    if current is not None:
        current.dispose()

    settings = load_settings()
    controller = PipelineController(
        LocationProvider(sensor),
        get_forecast_client(),
        days=settings.forecast_days,
        location_timeout_ms=settings.location_timeout_ms,
        location_max_age_ms=settings.location_max_age_ms,
    )
    st.session_state["pollen_controller"] = controller
    st.session_state["pollen_sensor_key"] = sensor_key
    return controller


def run_stage(controller: PipelineController, trigger: str) -> None:
    status = st.empty()
    labels = {Locating: "Finding your location…", Fetching: "Fetching pollen forecast…"}

    def show(state) -> None:
        if type(state) in labels:
            status.caption(labels[type(state)])
        else:
            status.empty()

    unsubscribe = controller.subscribe(show)
    try:
        with st.spinner("Loading pollen data..."):
            asyncio.run(getattr(controller, trigger)())
    finally:
        unsubscribe()


# ----------------------------------------------------------
# Rendering, one function per pipeline state
# ----------------------------------------------------------


def render_pending(state) -> None:
    if isinstance(state, Fetching):
        st.info(f"Fetching pollen forecast for {state.coordinate}…")
    elif isinstance(state, Locating):
        st.info("Finding your location…")
    else:
        st.info("Choose a location in the sidebar to load the pollen report.")


def render_failed(state: Failed, controller: PipelineController) -> None:
    st.error(FAILURE_TITLES.get(state.kind, "Unable to load data"))
    st.write(state.message)
    st.caption(state.remediation)
    if st.button("Try again", type="primary"):
        run_stage(controller, "retry")
        st.rerun()


def render_ready(state: Ready) -> None:
    forecast = state.forecast
    city = city_name_for(state.coordinate.latitude, state.coordinate.longitude)

    st.title("🌼 Pollen Report")
    st.caption(f"{forecast.date.strftime('%A, %B %d, %Y')} · {city} {state.coordinate}")
    st.markdown(f"Overall pollen level: {risk_badge(state.overall_tier)}", unsafe_allow_html=True)
    st.caption(summarize(forecast, city))

    section_heading("Pollen Levels by Type", "📊")
    visible = forecast.visible_pollen_types()
    if not visible:
        st.info("No pollen measured for this location today.")
    columns = st.columns(2)
    for idx, reading in enumerate(visible):
        tier = classify(reading.index_value)
        with columns[idx % 2]:
            st.markdown(f"**{reading.name}** · {reading.category} {risk_badge(tier)}", unsafe_allow_html=True)
            st.progress(reading.index_value / 5, text=f"{reading.index_value}/5")
            st.write(reading.description)
            if reading.recommendations:
                st.markdown("**Recommendations:**")
                for recommendation in reading.recommendations:
                    st.markdown(f"- {recommendation}")
            if reading.anomalous:
                st.caption("⚠️ The service reported an out-of-range value; it was capped.")

    pollen_df = forecast_to_frame(forecast)
    if not pollen_df.empty:
        bar_chart = (
            alt.Chart(pollen_df)
            .mark_bar(size=40)
            .encode(
                x=alt.X("pollen_type:N", title="Allergen"),
                y=alt.Y("index:Q", title="Pollen Index", scale=alt.Scale(domain=[0, 5])),
                color=alt.Color("risk:N", legend=alt.Legend(title="Risk")),
                tooltip=[
                    alt.Tooltip("pollen_type:N", title="Allergen"),
                    alt.Tooltip("index:Q", title="Index"),
                    alt.Tooltip("category:N", title="Category"),
                ],
            )
        )
        st.altair_chart(bar_chart, use_container_width=True)

    if forecast.plants:
        section_heading("Plants in Your Area", "🌿")
        for plant in forecast.plants:
            season_tag = "In Season" if plant.in_season else "Out of Season"
            with st.expander(f"{plant.name} · {plant.type} · {season_tag}"):
                if plant.picture_url:
                    st.image(plant.picture_url, width=160)
                if plant.family:
                    st.write(f"**Family:** {plant.family}")
                if plant.season:
                    st.write(f"**Season:** {plant.season}")
                if plant.description:
                    st.write(plant.description)


def render_state(state, controller: PipelineController) -> None:
    if isinstance(state, Ready):
        render_ready(state)
    elif isinstance(state, Failed):
        render_failed(state, controller)
    else:
        render_pending(state)


# ----------------------------------------------------------
# Page
# ----------------------------------------------------------

st.set_page_config(page_title="Pollen Report", page_icon="🌼", layout="wide")
st.markdown(PAGE_CSS, unsafe_allow_html=True)
settings = load_settings()
configure_logging(settings.log_level)

try:
    get_forecast_client()
except ConfigurationError as exc:
    st.error(str(exc))
    st.stop()

st.sidebar.title("Location")
mode = st.sidebar.radio("Locate by", options=["City", "Coordinates"], index=0 if settings.latitude is None else 1)
if mode == "City":
    city_input = st.sidebar.text_input("City name:", value=settings.city or "Houston").strip()
    sensor_key = f"city:{city_input.lower()}"
    sensor = CityPositionSensor(city_input) if city_input else None
else:
    lat = st.sidebar.number_input("Latitude", -90.0, 90.0, value=32.32 if settings.latitude is None else settings.latitude, format="%.4f")
    lon = st.sidebar.number_input("Longitude", -180.0, 180.0, value=35.32 if settings.longitude is None else settings.longitude, format="%.4f")
    sensor_key = f"coord:{round(lat, 4)}:{round(lon, 4)}"
    sensor = StaticPositionSensor(Coordinate(lat, lon))
force_refresh = st.sidebar.button("Refresh forecast")

controller = get_controller(sensor_key, sensor)
if isinstance(controller.state, Idle):
    run_stage(controller, "start")
elif force_refresh and isinstance(controller.state, Ready):
    run_stage(controller, "refresh")

render_state(controller.state, controller)
