"""Default tunables for formatting, dispatch, and export."""

from __future__ import annotations

import os


_EARNINGS_ENV_VAR = "CHATDASH_EARNINGS_KEYWORDS"

EARNINGS_KEYWORDS = (
    "earning",
    "revenue",
    "royalt",
    "income",
    "profit",
    "salary",
    "wage",
    "payment",
    "payout",
    "money",
    "cash",
    "dollar",
    "usd",
    "cost",
    "price",
)

COUNTRY_NAMES: dict[str, str] = {
    "us": "United States",
    "gb": "United Kingdom",
    "ca": "Canada",
    "au": "Australia",
    "de": "Germany",
    "fr": "France",
    "es": "Spain",
    "it": "Italy",
    "nl": "Netherlands",
    "se": "Sweden",
    "no": "Norway",
    "br": "Brazil",
    "mx": "Mexico",
    "ar": "Argentina",
    "co": "Colombia",
    "cr": "Costa Rica",
    "ng": "Nigeria",
    "gh": "Ghana",
    "ke": "Kenya",
    "za": "South Africa",
    "in": "India",
    "jp": "Japan",
    "kr": "South Korea",
    "ph": "Philippines",
    "id": "Indonesia",
    "other": "Other Countries",
}

# Raw metric-grid group keys -> display metadata.
PLATFORMS: dict[str, dict[str, str]] = {
    "youtube": {"display_name": "YouTube", "url_key": "YOUTUBE_URL", "primary_metric": "YOUTUBE_VIEWS"},
    "spotify": {"display_name": "Spotify", "url_key": "SPOTIFY_URL", "primary_metric": "SPOTIFY_PLAYS"},
    "linemusic": {"display_name": "LINE Music", "url_key": "LINE_MUSIC_URL", "primary_metric": "LINE_MUSIC_LIKES"},
    "tiktok": {
        "display_name": "TikTok",
        "url_key": "TIKTOK_URL",
        "primary_metric": "TIKTOK_TOP_VIDEOS_AVG_ENGAGEMENT",
    },
    "applemusic": {"display_name": "Apple Music", "url_key": "APPLEMUSIC_URL", "primary_metric": ""},
    "amazon": {"display_name": "Amazon Music", "url_key": "AMAZON_URL", "primary_metric": ""},
    "soundcloud": {"display_name": "SoundCloud", "url_key": "SOUNDCLOUD_URL", "primary_metric": ""},
    "shazam": {"display_name": "Shazam", "url_key": "SHAZAM_URL", "primary_metric": ""},
    "lastfm": {"display_name": "Last.fm", "url_key": "LASTFM_URL", "primary_metric": ""},
    "genius": {"display_name": "Genius", "url_key": "GENIUS_URL", "primary_metric": ""},
    "pandora": {"display_name": "Pandora", "url_key": "PANDORA_URL", "primary_metric": ""},
    "airplay": {"display_name": "AirPlay", "url_key": "AIRPLAY_URL", "primary_metric": ""},
    "siriusxm": {"display_name": "SiriusXM", "url_key": "SIRIUSXM_URL", "primary_metric": ""},
    "earnings": {"display_name": "Total Earnings", "url_key": "", "primary_metric": ""},
}

VERDICT_COLORS: dict[str, tuple[int, int, int]] = {
    "viral": (34, 139, 34),
    "trending": (30, 100, 200),
    "stable": (128, 0, 128),
    "declining": (200, 30, 30),
    "unknown": (128, 128, 128),
}

DEFAULTS = {
    "earnings_keywords": EARNINGS_KEYWORDS,
    "currency_symbol": "$",
    "timestamp_ms_threshold": 1e10,
    "score_tier_high": 90.0,
    "score_tier_medium": 70.0,
    "pdf_max_columns": 8,
    "pdf_metrics_rows_per_table": 10,
    "excel_max_columns": 15,
    "sheet_name_max_length": 31,
    # Millimetres of page height that must remain free before a block is written.
    "pdf_break_thresholds_mm": {
        "line": 60,
        "heading": 70,
        "table": 80,
        "paragraph": 70,
        "virality": 150,
        "image": 120,
    },
    "pdf_margin_mm": 20,
    "preview_chars": 80,
}


def earnings_keywords() -> tuple[str, ...]:
    """Return the configured earnings vocabulary, extended from the environment."""
    extra = os.getenv(_EARNINGS_ENV_VAR, "")
    keywords = list(DEFAULTS["earnings_keywords"])
    for item in extra.split(","):
        word = item.strip().lower()
        if word and word not in keywords:
            keywords.append(word)
    return tuple(keywords)


def platform_config(key: str) -> dict[str, str]:
    normalized = str(key).replace("_", "").replace(" ", "").lower()
    config = PLATFORMS.get(normalized)
    if config is not None:
        return config
    return {"display_name": str(key).replace("_", " ").title(), "url_key": "", "primary_metric": ""}
