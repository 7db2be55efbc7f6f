from __future__ import annotations

from src.charts import forecast_figure, historical_figure
from src.samples import forecast_payload
from src.validation import build_section
from src.view_state import forecast_view


def _view(payload: dict):
    return forecast_view(build_section("forecast_chart", payload).content)


def test_forecast_figure_draws_band_then_line():
    view = _view(forecast_payload(history_days=10, horizon_days=5))
    fig = forecast_figure(view)
    assert [trace.name for trace in fig.data] == ["Upper Bound", "Confidence Band", "Forecast"]
    assert fig.layout.yaxis.title.text == "Listeners"
    assert historical_figure(view).data[0].name == "Historical"


def test_missing_bounds_skip_the_band():
    view = _view({"forecast_data": {"columns": ["date", "value"], "data": [["2026-11-01", 5], ["2026-11-02", 6]]}})
    assert [trace.name for trace in forecast_figure(view).data] == ["Forecast"]
    assert historical_figure(view) is None
