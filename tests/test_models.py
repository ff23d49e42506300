"""Tests for image_studio.models."""

import json

import pytest

from image_studio.errors import InvalidImageDataError
from image_studio.models import (
    FEATURES,
    RESTORATION_TYPES,
    Credential,
    InlineImage,
    KeyUsage,
    SystemStatus,
)


class TestCredential:
    def test_secret_not_in_repr_or_str(self):
        c = Credential(name="GEMINI_API_KEY_1", secret="AIzaSUPERSECRET123")
        assert "AIzaSUPERSECRET123" not in repr(c)
        assert str(c) == "GEMINI_API_KEY_1"

    def test_frozen(self):
        c = Credential(name="A", secret="s")
        with pytest.raises(AttributeError):
            c.secret = "x"  # type: ignore[misc]


class TestKeyUsage:
    def test_canonical_field_order(self):
        row = KeyUsage(name="GEMINI_API_KEY", usage_count=3, is_rate_limited=False,
                       failures=0, feature="default")
        assert list(row.to_dict().keys()) == [
            "keyName", "usageCount", "isRateLimited", "failures", "feature",
        ]

    def test_json_stable(self):
        row = KeyUsage(name="K", usage_count=1, is_rate_limited=True, failures=2, feature="unassigned")
        assert json.dumps(row.to_dict()) == json.dumps(row.to_dict())


class TestSystemStatus:
    def test_available_counts_non_rate_limited(self):
        s = SystemStatus(total_credentials=4, healthy_credentials=2,
                         rate_limited_credentials=1, total_requests=9)
        d = s.to_dict()
        assert d["totalKeys"] == 4
        assert d["availableKeys"] == 3
        assert d["healthyKeys"] == 2
        assert d["rateLimitedKeys"] == 1
        assert d["totalRequests"] == 9


class TestInlineImage:
    def test_from_data_url(self):
        img = InlineImage.from_data_url("data:image/jpeg;base64,/9j/4AAQ")
        assert img.mime_type == "image/jpeg"
        assert img.data == "/9j/4AAQ"

    def test_to_data_url(self):
        img = InlineImage(mime_type="image/png", data="iVBORw0KGgo=")
        assert img.to_data_url() == "data:image/png;base64,iVBORw0KGgo="

    def test_to_part(self):
        img = InlineImage(mime_type="image/png", data="abc=")
        assert img.to_part() == {"inlineData": {"mimeType": "image/png", "data": "abc="}}

    @pytest.mark.parametrize("bad", ["", "not a data url", "data:image/png,abc", "data:;base64,abc"])
    def test_rejects_malformed(self, bad):
        with pytest.raises(InvalidImageDataError, match="Expected data URL"):
            InlineImage.from_data_url(bad)

    def test_label_in_message(self):
        with pytest.raises(InvalidImageDataError, match="Invalid mask data format"):
            InlineImage.from_data_url("nope", "mask")

    def test_decode(self):
        assert InlineImage(mime_type="image/png", data="aGVsbG8=").decode() == b"hello"

    def test_decode_invalid_base64(self):
        with pytest.raises(InvalidImageDataError):
            InlineImage(mime_type="image/png", data="***").decode()

    @pytest.mark.parametrize("mime,ext", [("image/png", "png"), ("image/jpeg", "jpg"), ("image/webp", "webp")])
    def test_extension(self, mime, ext):
        assert InlineImage(mime_type=mime, data="").extension == ext


class TestTagSets:
    def test_features(self):
        assert FEATURES == {
            "text-to-image", "canvas-editor", "style-transfer", "templates",
            "enhance-prompt", "guided-prompt", "photo-restore", "default",
        }

    def test_restoration_types(self):
        assert RESTORATION_TYPES == {"restore", "colorize", "enhance"}
