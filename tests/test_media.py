from __future__ import annotations

import base64
from datetime import datetime

import pytest

from src.media import (
    decode_image_base64,
    export_filename,
    image_file_info,
    image_is_loadable,
    is_http_url,
    video_file_info,
)
from src.samples import TINY_PNG_BASE64


def test_png_payload_decodes_with_and_without_data_url_prefix():
    data = decode_image_base64(TINY_PNG_BASE64)
    assert data is not None
    assert image_file_info(data) == ("image/png", "png")
    assert decode_image_base64(f"data:image/png;base64,{TINY_PNG_BASE64}") == data


def test_missing_padding_and_line_breaks_are_tolerated():
    stripped = TINY_PNG_BASE64.rstrip("=")
    wrapped = "\n".join(stripped[i : i + 20] for i in range(0, len(stripped), 20))
    assert decode_image_base64(wrapped) == decode_image_base64(TINY_PNG_BASE64)


@pytest.mark.parametrize(
    "value",
    [None, 42, "", "   ", "not base64 at all!", base64.b64encode(b"plain text, not an image").decode()],
)
def test_non_images_decode_to_none(value):
    assert decode_image_base64(value) is None


def test_jpeg_signature_is_recognized():
    assert image_file_info(b"\xff\xd8\xff\xe0" + b"\x00" * 16) == ("image/jpeg", "jpg")


def test_signature_with_a_corrupt_body_is_rejected():
    corrupt = b"\x89PNG\r\n\x1a\n" + b"not really a png" * 4
    assert not image_is_loadable(corrupt)
    assert decode_image_base64(base64.b64encode(corrupt).decode()) is None
    assert image_is_loadable(decode_image_base64(TINY_PNG_BASE64))


def test_http_urls_only():
    assert is_http_url("https://example.com/media/promo.mp4")
    assert is_http_url(" http://example.com/x ")
    assert not is_http_url("ftp://example.com/x.mp4")
    assert not is_http_url("https://")
    assert not is_http_url(None)


def test_video_file_info_uses_the_url_path():
    assert video_file_info("https://example.com/clip.webm?sig=1") == ("video/webm", "webm")
    assert video_file_info("https://example.com/stream") == ("video/mp4", "mp4")


def test_export_filename_is_dated_and_filename_safe():
    moment = datetime(2026, 10, 19, 23, 59)
    assert export_filename("Chat Export", "pdf", moment) == "chat_export_2026-10-19.pdf"
    assert export_filename("message_3", ".xlsx", moment) == "message_3_2026-10-19.xlsx"
    assert export_filename("!!!", "pdf", moment) == "export_2026-10-19.pdf"
