"""Demo assistant turns covering every display tag, in wire format."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

import numpy as np
import pandas as pd


# 1x1 PNG.
TINY_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def _ms(ts: pd.Timestamp) -> int:
    return int(ts.value // 1_000_000)


def forecast_payload(
    title: str = "Spotify Monthly Listeners",
    *,
    history_days: int = 400,
    horizon_days: int = 30,
    start_value: float = 120_000.0,
    daily_growth: float = 0.002,
    seed: int = 7,
    now: pd.Timestamp | None = None,
) -> dict[str, Any]:
    """Daily history ending today plus a forecast with widening bounds."""
    today = (pd.Timestamp.now(tz="UTC").tz_localize(None) if now is None else pd.Timestamp(now)).normalize()
    rng = np.random.default_rng(seed)
    hist_dates = pd.date_range(end=today, periods=history_days, freq="D")
    trend = start_value * np.power(1.0 + daily_growth, np.arange(history_days))
    noise = rng.normal(0.0, start_value * 0.01, size=history_days)
    hist_values = np.round(trend + noise, 0)
    last = float(hist_values[-1])
    fc_dates = pd.date_range(start=today + pd.Timedelta(days=1), periods=horizon_days, freq="D")
    steps = np.arange(1, horizon_days + 1)
    fc_values = np.round(last * np.power(1.0 + daily_growth, steps), 0)
    spread = last * 0.004 * steps
    return {
        "title": title,
        "y_axis_label": "Listeners",
        "historical_data": {
            "columns": ["date", "value"],
            "data": [[_ms(d), float(v)] for d, v in zip(hist_dates, hist_values)],
        },
        "forecast_data": {
            "columns": ["date", "value", "lower_bound", "upper_bound"],
            "data": [
                [_ms(d), float(v), float(v - s), float(v + s)]
                for d, v, s in zip(fc_dates, fc_values, spread)
            ],
        },
    }


TRACK_TABLE = {
    "title": "Top Tracks",
    "columns": ["track_name", "streams", "daily_streams", "revenue_usd", "release_date"],
    "data": [
        ["Midnight Drive", 48_200_000, 152_300, 192_800.5, "2024-03-01"],
        ["Paper Planes", 12_750_000, 40_100, 51_000, "2023-11-17"],
        ["Low Tide", 3_410_000, 9_870, 13_640.25, "2025-01-10"],
        ["Glass House", 845_000, 2_110, 3_380, "2025-06-06"],
    ],
}

VIRALITY_REPORT = {
    "artist_name": "Nova Reyes",
    "audience_growth_percentage": 18.4,
    "engagement_growth_percentage": -3.25,
    "final_score": 82,
    "verdict": "Trending",
    "summary": "Audience growth is strong across short-form video while engagement has cooled slightly.",
    "audience_analysis": "TikTok followers grew fastest; Spotify followers are tracking the same curve a week later.",
    "engagement_analysis": "Likes per post dipped after the tour announcement but comments held steady.",
    "detailed_metrics": {
        "tiktok_followers": {"status": "calculated", "growth": 24.1, "baseline_avg": 410_000, "recent_avg": 508_800},
        "spotify_followers": {"status": "calculated", "growth": 11.7, "baseline_avg": 230_000, "recent_avg": 256_900},
        "youtube_subscribers": {"status": "unavailable", "recent_avg": 98_000},
        "instagram_likes": {"status": "calculated", "growth": -6.2, "baseline_avg": 12_400, "recent_avg": 11_630},
        "tiktok_comments": {"status": "calculated", "growth": 2.0, "baseline_avg": 900, "recent_avg": 918},
        "shazam_count": {"status": "data_error"},
    },
}

PLAYLIST_REPORT = {
    "track_name": "Midnight Drive",
    "artist_name": "Nova Reyes",
    "summary": "Three editorial and two independent playlists match the track's tempo and audience.",
    "recommendations": [
        {
            "playlist_name": "Night Pop",
            "curator_name": "Spotify Editorial",
            "platform": "Spotify",
            "playlist_followers": 1_840_000,
            "playlist_url": "https://open.spotify.com/playlist/example-night-pop",
            "recommendation_score": 94,
            "reasoning": {"genre_fit": "Synth-pop core audience.", "tempo_match": "Within 4 BPM of the median track."},
        },
        {
            "playlist_name": "Drive Time",
            "curator_name": "Apple Music",
            "platform": "Apple Music",
            "playlist_followers": 620_000,
            "playlist_url": "https://music.apple.com/playlist/example-drive-time",
            "recommendation_score": 78,
            "reasoning": {"listener_overlap": "31% of listeners already follow the artist."},
        },
        {
            "playlist_name": "Fresh Finds Pop",
            "curator_name": "indie_curator",
            "platform": "Spotify",
            "playlist_followers": 45_300,
            "playlist_url": "",
            "recommendation_score": 61,
            "reasoning": {},
        },
    ],
}

METRIC_GRID = {
    "title": "Cross-Platform Snapshot",
    "data": {
        "spotify": {
            "monthly_listeners": 2_450_000,
            "followers": 310_500,
            "min_stream_earnings": 9_800,
            "max_stream_earnings": 14_700,
            "SPOTIFY_URL": "https://open.spotify.com/artist/example",
        },
        "youtube": {
            "subscribers": 98_000,
            "total_views": 41_200_000,
            "YOUTUBE_URL": "https://www.youtube.com/@example",
        },
        "earnings": {"total_revenue": 1_284_000.75, "royalty_payments": 212_400},
    },
}

COUNTRIES = [
    {"countryCode": "us", "percentage": 38.2},
    {"countryCode": "gb", "percentage": 9.6},
    {"countryCode": "br", "percentage": 12.4},
    {"countryCode": "de", "percentage": 7.1},
    {"countryCode": "other", "percentage": 32.7},
]

PLATFORMS = [
    {"name": "Spotify", "icon_url": "https://example.com/icons/spotify.png"},
    {"name": "YouTube", "icon_url": "https://example.com/icons/youtube.png"},
    {"name": "TikTok", "icon_url": "https://example.com/icons/tiktok.png"},
]


def _turn(answer: str, data_type: str, display_data: Any, query: str = "", status: bool = True) -> dict[str, Any]:
    return {
        "answer_str": answer,
        "display_data": display_data,
        "data_type": data_type,
        "query_str": query,
        "status_bool": status,
    }


def sample_responses(now: pd.Timestamp | None = None) -> dict[str, dict[str, Any]]:
    """Fresh wire payloads keyed by gallery label."""
    forecast = forecast_payload(now=now)
    wide_columns = [f"metric_{i:02d}" for i in range(1, 21)]
    wide_table = {
        "title": "Wide Weekly Export",
        "columns": ["week"] + wide_columns[1:],
        "data": [[f"2026-W{w:02d}"] + [w * 1000 + i for i in range(1, 20)] for w in range(30, 36)],
    }
    samples = {
        "Plain text": _turn(
            "Here is a **quick summary**.\n\n| platform | streams |\n|---|---|\n| Spotify | 48200000 |\n| YouTube | 12750000 |",
            "text",
            None,
            "Summarize my streams",
        ),
        "Dataframe": _turn("Your top tracks this quarter.", "dataframe", TRACK_TABLE, "Top tracks"),
        "Legacy dataframe wrapper": _turn("", "dataframe", {"dataframe": TRACK_TABLE}),
        "Wide table (20 columns)": _turn("Weekly metrics export.", "table", wide_table),
        "Key/value": _turn(
            "Account overview.",
            "key_value",
            {"data": {"total_streams": 65_205_000, "total_earnings": 260_820.75, "top_market": "US"}},
        ),
        "Metric grid": _turn("Platform snapshot.", "metric_grid", METRIC_GRID),
        "Virality report": _turn("Virality analysis for Nova Reyes.", "virality_report", VIRALITY_REPORT),
        "Forecast": _turn("Listener forecast for the next 30 days.", "forecast_chart", forecast),
        "Multi forecast": _turn(
            "Forecasts for two platforms.",
            "multi_forecast_display",
            {
                "forecasts": [
                    forecast,
                    forecast_payload("YouTube Views", start_value=40_000, daily_growth=0.001, seed=11, now=now),
                ]
            },
        ),
        "Playlist recommendations": _turn("", "playlist_recommendation_report", PLAYLIST_REPORT),
        "Multi-section report": _turn(
            "Full artist report.",
            "multi_section_report",
            {
                "sections": [
                    {"section_type": "key_value", "title": "Overview", "content": {"data": {"followers": 310_500}}},
                    {"section_type": "dataframe", "title": "Top Tracks", "content": TRACK_TABLE},
                    {"section_type": "dataframe", "title": "Broken Table", "content": {"columns": "oops"}},
                    {"section_type": "country_listenership_data", "title": "Listeners", "content": COUNTRIES},
                    {"section_type": "virality_report", "title": "Virality", "content": VIRALITY_REPORT},
                ]
            },
        ),
        "Platforms": _turn("You are connected to these platforms.", "platform_data", PLATFORMS),
        "Countries": _turn("Where your listeners are.", "country_listenership_data", COUNTRIES),
        "Untyped result array": _turn(
            "Results for your query.",
            "text",
            [
                TRACK_TABLE,
                {"total_streams": 65_205_000, "top_market": "US"},
            ],
        ),
        "Image": _turn("Generated cover art.", "image_base64", TINY_PNG_BASE64),
        "Video": _turn("Here is the promo clip.", "video_url", "https://example.com/media/promo.mp4"),
        "Malformed payload": _turn("This table arrived damaged.", "dataframe", {"columns": ["a", "b"], "data": "x"}),
        "Unknown data type": _turn("Something new.", "sentiment_heatmap", {"foo": 1}),
        "Backend error": _turn("The analytics service timed out.", "text", None, status=False),
    }
    return deepcopy(samples)
