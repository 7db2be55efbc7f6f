"""Plotly figures for forecast sections."""

from __future__ import annotations

import plotly.express as px
import plotly.graph_objects as go

from src.view_state import ForecastView


BAND_FILL = "rgba(66, 139, 202, 0.18)"


def historical_figure(view: ForecastView) -> go.Figure | None:
    if view.historical.empty:
        return None
    fig = px.line(
        view.historical,
        x="date",
        y="value",
        title=f"{view.title}: Historical",
        labels={"date": "Date", "value": view.y_axis_label},
    )
    fig.update_traces(name="Historical", showlegend=True)
    return fig


def forecast_figure(view: ForecastView) -> go.Figure | None:
    """Forecast line with a shaded band over points that carry both bounds."""
    if view.forecast.empty:
        return None
    fig = go.Figure()
    if not view.band.empty:
        fig.add_trace(
            go.Scatter(
                x=view.band["date"],
                y=view.band["upper"],
                name="Upper Bound",
                mode="lines",
                line=dict(width=0),
                showlegend=False,
            )
        )
        fig.add_trace(
            go.Scatter(
                x=view.band["date"],
                y=view.band["lower"],
                name="Confidence Band",
                mode="lines",
                line=dict(width=0),
                fill="tonexty",
                fillcolor=BAND_FILL,
            )
        )
    fig.add_trace(
        go.Scatter(
            x=view.forecast["date"],
            y=view.forecast["value"],
            name="Forecast",
            mode="lines+markers",
            line=dict(dash="dash"),
        )
    )
    fig.update_layout(
        title=f"{view.title}: Forecast",
        xaxis_title="Date",
        yaxis_title=view.y_axis_label,
        template="plotly_white",
    )
    return fig
